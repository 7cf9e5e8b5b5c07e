import logging
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import Client, create_client

from lib.config import Settings
from lib.error_handler import AppError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = '23505'

def create_supabase_client(settings: Settings) -> Client:
    """Service-role client; the webhook acts on behalf of every user"""
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise AppError("Supabase is not configured", status_code=500)
    try:
        return create_client(settings.supabase_url, settings.supabase_service_role_key)
    except Exception as e:
        logger.error(f"Error initializing Supabase client: {str(e)}")
        raise

def rows(result) -> List[Dict[str, Any]]:
    if hasattr(result, 'error') and result.error:
        raise AppError(f"Supabase error: {result.error}", status_code=500)
    return list(result.data or [])

def first_row(result) -> Optional[Dict[str, Any]]:
    data = rows(result)
    return data[0] if data else None

def is_unique_violation(error: Exception) -> bool:
    return isinstance(error, APIError) and str(error.code) == UNIQUE_VIOLATION
