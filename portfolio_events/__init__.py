"""
Portfolio Events
================
Contact submission pipeline and live visitor statistics over Kafka.
"""

__version__ = "1.0.0"
