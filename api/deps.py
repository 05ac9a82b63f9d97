"""
API Dependencies
Common dependencies for FastAPI endpoints
"""

from database import get_db


class ServiceDependency:
    """
    Dependency injection for services
    """

    @staticmethod
    def get_patient_service():
        from services.patient_service import patient_service
        return patient_service

    @staticmethod
    def get_medication_service():
        from services.medication_service import medication_service
        return medication_service

    @staticmethod
    def get_schedule_service():
        from services.schedule_service import schedule_service
        return schedule_service

    @staticmethod
    def get_dose_service():
        from services.dose_service import dose_service
        return dose_service

    @staticmethod
    def get_adherence_service():
        from services.adherence_service import adherence_service
        return adherence_service

    @staticmethod
    def get_repair_service():
        from services.repair_service import repair_service
        return repair_service


# Service dependency instances
services = ServiceDependency()


__all__ = ["get_db", "services", "ServiceDependency"]
