"""ExamHub - exam and question-bank platform."""

__version__ = "0.1.0"
