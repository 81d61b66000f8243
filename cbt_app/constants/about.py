"""Static metadata describing the CBT engine."""

APP_NAME = "CBT Engine"
APP_VERSION = "0.1.0"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "A computer-based testing service: administrators author question banks and exams, "
    "students take timed exams from the browser and receive automatically graded results."
)
