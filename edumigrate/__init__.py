"""MongoDB to SQLite migration and backup tooling for the EduTech chatbot."""

__version__ = "1.0.0"
