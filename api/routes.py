import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Optional

import requests
from flask import Flask, jsonify, request

from api.services.access import AccessService
from api.services.attachments import AttachmentService
from api.services.journal import JournalService
from api.services.milestones import MilestoneService
from api.services.sms import SMSService
from api.services.storage import StorageService
from api.services.users import UserService
from api.services.verification import VerificationService
from api.sms_handler import SMSHandler
from lib.config import Settings, get_settings
from lib.database import create_supabase_client
from lib.models import utc_now
from lib.rate_limiter import RateLimiter
from lib.surge_client import SurgeClient

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = 'Surge-Signature'

def build_handler(
    settings: Settings,
    supabase_client,
    http_session: Optional[requests.Session] = None,
    background_sends: bool = True,
) -> SMSHandler:
    """Wire the pipeline components around one Supabase client"""
    surge_client = SurgeClient(settings, session=http_session)
    executor = None
    if background_sends:
        executor = ThreadPoolExecutor(
            max_workers=settings.outbound_workers,
            thread_name_prefix='outbound-sms'
        )
    sms_service = SMSService(surge_client, executor=executor)
    storage_service = StorageService(supabase_client)
    user_service = UserService(supabase_client)
    journal_service = JournalService(supabase_client, max_attempts=settings.append_max_attempts)

    return SMSHandler(
        settings=settings,
        storage_service=storage_service,
        rate_limiter=RateLimiter(
            supabase_client,
            max_attempts=settings.rate_limit_max_messages,
            window_minutes=settings.rate_limit_window_minutes
        ),
        user_service=user_service,
        verification_service=VerificationService(user_service, storage_service, sms_service),
        access_service=AccessService(supabase_client, settings, sms_service),
        journal_service=journal_service,
        attachment_service=AttachmentService(supabase_client, settings, session=http_session),
        sms_service=sms_service,
        milestone_service=MilestoneService(journal_service, sms_service),
    )

def create_app(
    settings: Optional[Settings] = None,
    supabase_client=None,
    http_session: Optional[requests.Session] = None,
    background_sends: bool = True,
) -> Flask:
    settings = settings or get_settings()

    if supabase_client is None:
        logger.info("Initializing Supabase client...")
        supabase_client = create_supabase_client(settings)
        logger.info("Supabase client initialized successfully")

    if not settings.surge_webhook_secret:
        logger.warning("SURGE_WEBHOOK_SECRET is not set; every webhook will be rejected")

    handler = build_handler(settings, supabase_client, http_session, background_sends)
    storage_service = handler.storage

    app = Flask(__name__)
    app.config['SMS_HANDLER'] = handler

    @app.route('/webhook', methods=['POST'])
    def webhook():
        """Surge inbound message webhook"""
        result = handler.handle_webhook(
            request.get_data(),
            request.headers.get(SIGNATURE_HEADER)
        )
        return jsonify(result.body), result.status_code

    @app.route('/health', methods=['GET'])
    def health():
        """Basic health check"""
        return jsonify({'status': 'healthy'})

    @app.route('/status', methods=['GET'])
    def status():
        """Message processing over the last hour"""
        try:
            stats = storage_service.processing_stats(utc_now() - timedelta(hours=1))
        except Exception as e:
            logger.error(f"Status check failed: {str(e)}")
            return jsonify({
                'status': 'error',
                'checks': [{'name': 'Database Connectivity', 'status': 'FAIL'}]
            }), 503

        processing_ok = stats['unprocessed'] == 0 and stats['errors'] == 0
        conversion = stats['sms_entries'] / stats['total'] if stats['total'] else None
        checks = [
            {'name': 'Database Connectivity', 'status': 'PASS'},
            {
                'name': 'Message Processing (Last Hour)',
                'status': 'PASS' if processing_ok else 'WARN',
                'details': stats,
            },
            {
                'name': 'Outbound Credentials',
                'status': 'PASS' if settings.surge_configured else 'WARN',
            },
        ]
        return jsonify({
            'status': 'healthy' if all(c['status'] == 'PASS' for c in checks) else 'degraded',
            'conversion_rate': round(conversion * 100, 1) if conversion is not None else None,
            'checks': checks,
        })

    return app
