"""
Configuration settings for the PDF form action engine.
Consolidates all constants and configuration in one place.
"""
import os

# Sheet Storage
SHEET_STORAGE_DIR = os.getenv("SHEET_STORAGE_DIR", "tmp_sheets")
SHEET_FILE_NAME = "sheet.pdf"
SHEET_META_FILE_NAME = "meta.txt"

# File Upload Limits
MAX_FILE_SIZE = 20 * 1024 * 1024  # 20MB
MAX_FORM_FIELDS = 2000  # Safety cap for extracted form fields

# Session Management
SHEET_INACTIVITY_TIMEOUT = 60 * 60  # 1 hour, applied only when cleanup_inactive() is called

# Field Geometry
DEFAULT_RENDER_SCALE = 1.5  # Matches the viewer's default zoom

# Document JavaScript
HELPER_SCRIPT_NAME = "HelpersJS"

# Logging Configuration
LOG_DIR = os.getenv("SHEET_ACTIONS_LOG_DIR", os.getcwd())
LOG_FILE_ENGINE = 'sheet_actions.log'
LOG_FILE_OPERATIONS = 'sheet_operations.log'
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'

# Error Messages
ERROR_MESSAGES = {
    'not_pdf': 'Not a PDF file',
    'file_too_large': 'File too large (>20MB)',
    'parse_failed': 'Failed to parse PDF',
    'encrypted_pdf': 'Encrypted PDF not supported',
    'no_catalog': 'PDF has no document catalog',
    'not_acroform': 'PDF has no AcroForm',
    'no_fields_array': 'AcroForm has no Fields array',
    'xfa_form': 'XFA forms are not supported',
    'locked_pdf': 'PDF is locked against modification',
    'field_not_found': 'Form field not found',
    'missing_role': 'Action mapping is missing required fields',
    'invalid_recipe': 'Action mapping is invalid',
    'save_failed': 'Failed to write updated PDF',
    'unknown_sheet': 'Unknown sheet_id',
}
