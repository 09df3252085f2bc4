"""
Decorators for FastAPI endpoint error handling and resource management.

Conversion endpoints share the same upload handling: file validation, a
temporary file for the engine, a processing timeout and the mapping from
converter errors to HTTP status codes.
"""

import os
import tempfile
import logging
import asyncio
from functools import wraps
from typing import Callable, Optional
from fastapi import UploadFile, HTTPException, Request

from folio.utils.validation import (
    validate_file_content,
    BackendContractError,
    ConfigurationError,
    PdfValidationError,
    ProcessingTimeoutError,
    MemoryLimitError,
    VALIDATION_CONSTANTS
)

logger = logging.getLogger(__name__)


def handle_pdf_processing(func: Callable) -> Callable:
    """
    Decorator for endpoints that convert an uploaded PDF.

    The decorated function must accept `request: Request` and `file: UploadFile`
    as keyword arguments. The decorator stores the path of the uploaded copy in
    `request.state.temp_file_path` and removes it when the endpoint returns.

    Error mapping:
        400 - not a PDF, unreadable upload, invalid PDF or configuration
        408 - processing timeout
        422 - page backend protocol error
        507 - output or memory limit exceeded
        500 - anything else
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        request: Request = kwargs.get('request')
        if not request:
            raise HTTPException(
                status_code=500,
                detail="Endpoint decorated with handle_pdf_processing must accept 'request: Request'"
            )

        file: UploadFile = kwargs.get('file')
        if not file:
            raise HTTPException(status_code=400, detail="File parameter is required")

        processing_timeout: Optional[float] = kwargs.get('processing_timeout')
        timeout_seconds = processing_timeout or VALIDATION_CONSTANTS['MAX_PROCESSING_TIME_SECONDS']

        if not file.filename or not file.filename.lower().endswith('.pdf'):
            raise HTTPException(status_code=400, detail="Only PDF files are supported")

        try:
            content = await file.read()
        except Exception as e:
            logger.error(f"Error reading uploaded file: {e}")
            raise HTTPException(status_code=400, detail=f"Error reading uploaded file: {str(e)}")

        is_valid_content, content_error = validate_file_content(
            content,
            max_size_mb=VALIDATION_CONSTANTS['MAX_FILE_SIZE_MB']
        )
        if not is_valid_content:
            logger.warning(f"File content validation failed for {file.filename}: {content_error}")
            raise HTTPException(status_code=400, detail=content_error)

        temp_file = None
        try:
            temp_file = tempfile.NamedTemporaryFile(delete=False, suffix='.pdf')
            temp_file.write(content)
            temp_file.flush()
            temp_file.close()

            request.state.temp_file_path = temp_file.name

            try:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout_seconds)

            except asyncio.TimeoutError:
                logger.error(f"Conversion timed out after {timeout_seconds}s for {file.filename}")
                raise HTTPException(
                    status_code=408,
                    detail=f"PDF conversion timed out after {timeout_seconds} seconds."
                )
            except (PdfValidationError, ConfigurationError) as e:
                logger.warning(f"Rejected {file.filename}: {e}")
                raise HTTPException(status_code=400, detail=f"Invalid request: {str(e)}")
            except BackendContractError as e:
                logger.error(f"Page backend error for {file.filename}: {e}")
                raise HTTPException(status_code=422, detail=f"Could not interpret PDF content: {str(e)}")
            except ProcessingTimeoutError as e:
                logger.error(f"Processing timeout for {file.filename}: {e}")
                raise HTTPException(status_code=408, detail=f"Processing timeout: {str(e)}")
            except MemoryLimitError as e:
                logger.error(f"Output limit exceeded for {file.filename}: {e}")
                raise HTTPException(status_code=507, detail=f"Output limit exceeded: {str(e)}")
            except HTTPException:
                raise
            except Exception as e:
                logger.exception(f"Unexpected error converting {file.filename}")
                raise HTTPException(
                    status_code=500,
                    detail=f"Internal server error during PDF conversion: {str(e)}"
                )

        finally:
            if temp_file and os.path.exists(temp_file.name):
                try:
                    os.unlink(temp_file.name)
                    logger.debug(f"Cleaned up temporary file: {temp_file.name}")
                except OSError as e:
                    logger.warning(f"Failed to clean up temporary file {temp_file.name}: {e}")

    return wrapper
