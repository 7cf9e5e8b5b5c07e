import logging
import sys

from dotenv import load_dotenv

from lib.config import get_settings

load_dotenv()
settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout,
    force=True
)
logger = logging.getLogger(__name__)

from api.routes import create_app  # noqa: E402

app = create_app(settings)

if __name__ == "__main__":
    logger.info("Starting Flask server...")
    app.run(debug=False, port=8000)
