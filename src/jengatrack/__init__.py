"""JengaTrack conversational command engine."""
