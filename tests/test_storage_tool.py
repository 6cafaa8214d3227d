"""Tests for the tool-call payload collector."""

from remediation_agent.tools import StorageTool


class TestStorageTool:
    """Tests for StorageTool."""

    def test_stores_valid_payloads_in_order(self):
        storage = StorageTool(required=("line_start", "message"))

        storage.store({"line_start": 3, "message": "first"})
        response = storage.store({"line_start": 9, "message": "second"})

        assert [v["message"] for v in storage.values] == ["first", "second"]
        assert len(storage) == 2
        assert "Total: 2" in response["content"][0]["text"]

    def test_rejects_payload_missing_required_field(self):
        """Given a payload without a message, the agent should get an error response."""
        # Given
        storage = StorageTool(required=("line_start", "message"))

        # When
        response = storage.store({"line_start": 3, "message": ""})

        # Then
        assert response["is_error"] is True
        assert "message" in response["content"][0]["text"]
        assert storage.values == []
        assert storage.rejected == 1

    def test_values_is_a_copy(self):
        storage = StorageTool()
        storage.store({"a": 1})

        storage.values.clear()

        assert len(storage) == 1
