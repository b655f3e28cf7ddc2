"""
Services Module
Business logic layer for the DoseReminder application
"""

from services.user_service import UserService, user_service
from services.schedule_service import ScheduleService, schedule_service
from services.medication_service import MedicationService, medication_service
from services.settings_service import SettingsService, settings_service


__all__ = [
    # Service classes
    "UserService",
    "ScheduleService",
    "MedicationService",
    "SettingsService",
    # Singleton instances
    "user_service",
    "schedule_service",
    "medication_service",
    "settings_service",
]
