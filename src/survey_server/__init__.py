"""survey_server: FastAPI REST server for the survey intake SDK."""
