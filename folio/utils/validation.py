"""
Input validation and the error types shared by the converter.

File checks run before a document is opened (signature, size, free
resources); the exception classes are what the engine raises and what the
HTTP layer maps to status codes.
"""

import os
import tempfile
import psutil
from typing import Optional, Tuple, Dict, Any
import logging

logger = logging.getLogger(__name__)

VALIDATION_CONSTANTS = {
    'PDF_SIGNATURE': b'%PDF',
    'MAX_FILE_SIZE_MB': 50,
    'MAX_PROCESSING_TIME_SECONDS': 300,
    'MIN_AVAILABLE_MB': 100,
    'SUPPORTED_PDF_VERSIONS': ['1.0', '1.1', '1.2', '1.3', '1.4', '1.5', '1.6', '1.7', '2.0'],
}

BYTES_PER_MB = 1024 * 1024


class PdfValidationError(Exception):
    """Input is not a PDF the converter can open"""
    pass


class ProcessingTimeoutError(Exception):
    """Conversion ran past its deadline"""
    pass


class MemoryLimitError(Exception):
    """Output budget exceeded"""
    pass


class BackendContractError(Exception):
    """Page backend emitted events out of protocol order"""
    pass


class ConfigurationError(Exception):
    """Invalid conversion configuration"""
    pass


def _check_size(size_bytes: int, max_size_mb: Optional[int]) -> Tuple[bool, Optional[str]]:
    if max_size_mb is None:
        max_size_mb = VALIDATION_CONSTANTS['MAX_FILE_SIZE_MB']
    size_mb = size_bytes / BYTES_PER_MB
    if size_mb > max_size_mb:
        return False, f"File too large: {size_mb:.1f}MB (max: {max_size_mb}MB)"
    return True, None


def _check_header(header: bytes) -> Tuple[bool, Optional[str]]:
    signature = VALIDATION_CONSTANTS['PDF_SIGNATURE']
    if len(header) < len(signature):
        return False, "File too small to be a valid PDF"
    if not header.startswith(signature):
        return False, f"Invalid PDF signature. Expected {signature}, got {header[:4]}"

    # Many PDFs still parse with an unexpected version, so only warn
    version = header[5:8].decode('ascii', errors='replace')
    if len(header) >= 8 and version not in VALIDATION_CONSTANTS['SUPPORTED_PDF_VERSIONS']:
        logger.warning(f"Unexpected PDF version: {version!r}")
    return True, None


def validate_pdf_signature(file_path: str) -> Tuple[bool, Optional[str]]:
    """
    Check the %PDF magic bytes and version of a file on disk

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        with open(file_path, 'rb') as f:
            return _check_header(f.read(8))
    except FileNotFoundError:
        return False, f"File not found: {file_path}"
    except PermissionError:
        return False, f"Permission denied accessing file: {file_path}"
    except OSError as e:
        return False, f"Error validating PDF signature: {str(e)}"


def validate_file_size(file_path: str, max_size_mb: Optional[int] = None) -> Tuple[bool, Optional[str]]:
    try:
        size = os.path.getsize(file_path)
    except OSError as e:
        return False, f"Error checking file size: {str(e)}"
    return _check_size(size, max_size_mb)


def validate_file_content(content: bytes, max_size_mb: Optional[int] = None) -> Tuple[bool, Optional[str]]:
    """
    Validate an upload before it is written to a temporary file

    Args:
        content: Raw file content bytes
        max_size_mb: Maximum file size in MB

    Returns:
        Tuple of (is_valid, error_message)
    """
    size_ok, size_error = _check_size(len(content), max_size_mb)
    if not size_ok:
        return False, size_error
    return _check_header(content[:8])


def validate_processing_environment() -> Tuple[bool, Optional[str]]:
    """Check for enough free memory and temp disk space to render backgrounds."""
    min_mb = VALIDATION_CONSTANTS['MIN_AVAILABLE_MB']
    temp_dir = tempfile.gettempdir()
    try:
        available_mb = psutil.virtual_memory().available / BYTES_PER_MB
        free_mb = psutil.disk_usage(temp_dir).free / BYTES_PER_MB
    except OSError as e:
        return False, f"Error checking system resources: {str(e)}"

    if available_mb < min_mb:
        return False, f"Insufficient memory available: {available_mb:.1f}MB (need at least {min_mb}MB)"
    if free_mb < min_mb:
        return False, f"Insufficient disk space in {temp_dir}: {free_mb:.1f}MB (need at least {min_mb}MB)"

    logger.debug(f"Environment check passed: {available_mb:.1f}MB memory, {free_mb:.1f}MB disk")
    return True, None


def comprehensive_pdf_validation(file_path: str, max_size_mb: Optional[int] = None) -> Dict[str, Any]:
    """
    File-level checks run before the document is opened

    Low system resources are reported as warnings; they do not make the
    file invalid.

    Returns:
        Dictionary with is_valid, errors, warnings and file_info
    """
    results: Dict[str, Any] = {'is_valid': True, 'errors': [], 'warnings': [], 'file_info': {}}

    if not os.path.exists(file_path):
        results['is_valid'] = False
        results['errors'].append(f"File not found: {file_path}")
        return results

    for valid, error in (validate_file_size(file_path, max_size_mb), validate_pdf_signature(file_path)):
        if not valid:
            results['is_valid'] = False
            results['errors'].append(error)
    results['file_info']['size_mb'] = round(os.path.getsize(file_path) / BYTES_PER_MB, 2)

    env_valid, env_error = validate_processing_environment()
    if not env_valid:
        results['warnings'].append(env_error)

    return results


__all__ = [
    'validate_pdf_signature',
    'validate_file_size',
    'validate_file_content',
    'validate_processing_environment',
    'comprehensive_pdf_validation',
    'PdfValidationError',
    'ProcessingTimeoutError',
    'MemoryLimitError',
    'BackendContractError',
    'ConfigurationError',
    'VALIDATION_CONSTANTS'
]
