"""Chat command components loaded by the bot at startup."""
