import atexit
import logging
import os

from dotenv import load_dotenv

load_dotenv()

from pdf_editor import config  # noqa: E402
from pdf_editor.ocr import OcrEngine  # noqa: E402
from pdf_editor.server import create_app  # noqa: E402

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

ocr_engine = OcrEngine()
ocr_engine.start()
atexit.register(ocr_engine.close)

app = create_app(ocr_engine=ocr_engine)

if __name__ == '__main__':
    port = int(os.getenv('PORT', config.PORT))
    logging.getLogger(__name__).info("Server running on port %d", port)
    app.run(host='0.0.0.0', port=port)
