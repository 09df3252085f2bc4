"""Folio PDF to HTML conversion server"""

import sys
import logging
import asyncio
import json
import base64
from typing import Optional
import os

import uvicorn
from fastapi import FastAPI, UploadFile, File, HTTPException, Query, Form, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, HTMLResponse

from rich.console import Console
from rich.logging import RichHandler

from folio.engine.config import ConversionConfig
from folio.extractors.html_exporter import build_config, convert_pdf
from folio.models.render_types import ConvertResponse
from folio.utils.assets import MemoryAssetSink
from folio.utils.endpoint_decorators import handle_pdf_processing
from folio.utils.resource_limits import OutputBudget

API_VERSION = "1.0.0"
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
DEFAULT_TIMEOUT_SECONDS = 300
MIN_TIMEOUT_SECONDS = 1
MAX_TIMEOUT_SECONDS = 600

logger = logging.getLogger("rich")

app = FastAPI(
    title="Folio PDF to HTML API",
    description="Convert PDF pages to HTML text layers over rendered backgrounds",
    version=API_VERSION
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "message": "Folio PDF to HTML API",
        "version": API_VERSION,
        "features": [
            "Positioned text layer with shared CSS classes",
            "Occlusion-aware text visibility",
            "SVG or raster page backgrounds",
            "Embedded web fonts",
        ]
    }


@app.get("/health")
async def health_check():
    """Health check with dependency verification"""
    try:
        import PIL
        import pdfminer
        import pikepdf
        import numpy
        import fontTools

        return {
            "status": "healthy",
            "version": API_VERSION,
            "features": {
                "page_content": "pdfminer.six",
                "document_info": "pikepdf",
                "raster_backgrounds": "Pillow",
                "web_fonts": "fontTools",
            },
            "dependencies": {
                "PIL": PIL.__version__,
                "pdfminer": pdfminer.__version__,
                "pikepdf": pikepdf.__version__,
                "numpy": numpy.__version__,
                "fontTools": fontTools.version,
            }
        }
    except ImportError as e:
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": f"Missing dependency: {str(e)}"
            }
        )


def _request_config(config: Optional[str], processing_timeout: Optional[float]) -> ConversionConfig:
    """Parse the optional JSON config; the server always keeps assets in memory."""
    try:
        values = json.loads(config) if config else {}
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON in config: {str(e)}")
    if not isinstance(values, dict):
        raise HTTPException(status_code=400, detail="config must be a JSON object")

    values.update(dest_dir=None, embed_css=True)
    if processing_timeout is not None:
        values['timeout_seconds'] = processing_timeout
    try:
        return build_config(**values)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid config structure: {str(e)}")


def _convert_in_memory(file_path: str, config: ConversionConfig) -> tuple:
    sink = MemoryAssetSink(OutputBudget(config.tmp_file_size_limit))
    result = convert_pdf(file_path, config=config, sink=sink)
    return result, sink


@app.post("/convert", response_model=ConvertResponse)
@handle_pdf_processing
async def convert(
    *,
    request: Request,
    file: UploadFile = File(...),
    config: Optional[str] = Form(None, description="Optional JSON object of conversion settings"),
    processing_timeout: Optional[float] = Query(DEFAULT_TIMEOUT_SECONDS, ge=MIN_TIMEOUT_SECONDS, le=MAX_TIMEOUT_SECONDS, description="Processing timeout in seconds")
):
    """
    Convert a PDF to a single HTML document.

    **Configuration (JSON):**
    - `first_page` / `last_page`: Page range (1-based, inclusive)
    - `zoom`: Output scale factor (default: `1.0`)
    - `bg_format`: `svg`, `png` or `jpg` (default: `svg`)
    - `correct_text_visibility`: `0` off, `1` hide covered text, `2` also raster partially covered pages
    - `embed_font` / `embed_image`: Inline assets as data URIs (default: `true`)

    **Returns:**
    - `html`: Complete HTML document
    - `pages`: Per-page status, layout and coverage summary
    - `assets`: Non-inlined assets by name, base64 encoded
    """
    conversion_config = _request_config(config, processing_timeout)
    temp_file_path = request.state.temp_file_path

    logger.info(f"Converting {file.filename} with {conversion_config!r}")

    result, sink = await asyncio.to_thread(_convert_in_memory, temp_file_path, conversion_config)

    logger.info(
        f"Converted {file.filename}: {len(result.pages)} pages, "
        f"{len(sink.assets)} assets{' (partial)' if result.aborted else ''}"
    )
    return ConvertResponse(
        pageCount=result.page_count,
        pages=result.pages,
        html=result.html,
        assets={name: base64.b64encode(data).decode('utf-8') for name, data in sink.assets.items()},
    )


@app.post("/convert/html", response_class=HTMLResponse)
@handle_pdf_processing
async def convert_html(
    *,
    request: Request,
    file: UploadFile = File(...),
    processing_timeout: Optional[float] = Query(DEFAULT_TIMEOUT_SECONDS, ge=MIN_TIMEOUT_SECONDS, le=MAX_TIMEOUT_SECONDS, description="Processing timeout in seconds")
):
    """Convert with every asset inlined and return the HTML document itself."""
    conversion_config = _request_config(
        json.dumps({'embed_font': True, 'embed_image': True}), processing_timeout
    )
    result, _ = await asyncio.to_thread(_convert_in_memory, request.state.temp_file_path, conversion_config)
    return HTMLResponse(content=result.html)


def _configure_server_logging():
    """Configure logging with Rich handler and filters for clean output"""
    console = Console(force_terminal=True)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    class ShutdownFilter(logging.Filter):
        """Filter out shutdown-related log messages"""
        def filter(self, record):
            if record.exc_info and record.exc_info[0] in (KeyboardInterrupt, asyncio.CancelledError):
                return False
            if "CancelledError" in str(record.msg) or "KeyboardInterrupt" in str(record.msg):
                return False
            return True

    rich_handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_time=False,
        show_path=True
    )
    rich_handler.addFilter(ShutdownFilter())

    logging.basicConfig(level=logging.WARNING, format="%(message)s", handlers=[rich_handler])

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)

    # pdfminer is chatty at INFO
    logging.getLogger("pdfminer").setLevel(logging.WARNING)
    logging.getLogger("fontTools").setLevel(logging.WARNING)

    for module_name in ["rich", "folio"]:
        logging.getLogger(module_name).setLevel(log_level)

    return console


def _find_free_port(start_port: int = 8000) -> int:
    """Find an available port starting from the given port"""
    import socket

    port = start_port
    max_port = start_port + 100

    while port < max_port:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(('localhost', port))
                return port
        except OSError:
            port += 1

    return start_port


server_console = _configure_server_logging()

if __name__ == "__main__":
    free_port = _find_free_port()
    server_console.print(f"[bold green]Starting server on http://localhost:{free_port}[/bold green]")

    try:
        uvicorn.run("folio.main:app", host="0.0.0.0", port=free_port, reload=True, log_config=None)
    except KeyboardInterrupt:
        server_console.print("\n[bold yellow]Server stopped.[/bold yellow]")
        sys.exit(0)
