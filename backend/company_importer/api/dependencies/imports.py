"""Import service dependency."""

from fastapi import Request

from company_importer.services.import_service import ImportService


def get_import_service(request: Request) -> ImportService:
    """FastAPI dependency returning the process-wide service built at startup."""
    return request.app.state.import_service
