import argparse
import json
import time
import uuid

import requests

from lib.config import get_settings
from lib.signature import compute_signature

def build_payload(phone: str, body: str, image_url: str = None) -> dict:
    """A message.received event in the current Surge shape"""
    attachments = []
    if image_url:
        attachments.append({'type': 'image', 'url': image_url})
    return {
        'event': 'message.received',
        'properties': {
            'id': f"msg_test_{uuid.uuid4().hex[:12]}",
            'content': body,
            'contact': {'phone_number': phone},
            'conversation': {'id': f"cnv_test_{uuid.uuid4().hex[:8]}"},
            'attachments': attachments,
        },
    }

def send_test_webhook(url: str, phone: str, body: str, image_url: str = None):
    """Sign and post a sample webhook to a running server"""
    settings = get_settings()
    if not settings.surge_webhook_secret:
        print("SURGE_WEBHOOK_SECRET is not set; the server would reject this request")
        return None

    raw = json.dumps(build_payload(phone, body, image_url)).encode()
    timestamp = str(int(time.time()))
    signature = compute_signature(raw, timestamp, settings.surge_webhook_secret)

    try:
        response = requests.post(
            url,
            data=raw,
            headers={
                'Content-Type': 'application/json',
                'Surge-Signature': f"t={timestamp},v1={signature}",
            },
            timeout=settings.http_timeout_seconds,
        )
        print(f"Status: {response.status_code}")
        print(f"Response: {response.text}")
        return response
    except requests.exceptions.RequestException as e:
        print(f"Error sending webhook: {str(e)}")
        raise

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send a signed test webhook")
    parser.add_argument('phone', help="Sender phone number, e.g. +15551234567")
    parser.add_argument('body', nargs='?', default="Test journal entry from the webhook script")
    parser.add_argument('--url', default='http://localhost:8000/webhook')
    parser.add_argument('--image-url', default=None)
    args = parser.parse_args()

    send_test_webhook(args.url, args.phone, args.body, args.image_url)
