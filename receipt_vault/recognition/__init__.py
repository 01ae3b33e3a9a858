"""Receipt recognition: provider fallback chain, text parsing, quality scoring"""
from receipt_vault.recognition.engine import RecognitionEngine, get_recognition_engine, recognize
from receipt_vault.recognition.errors import AllProvidersFailed, ProviderError
from receipt_vault.recognition.text_parser import ParserLocale, parse_receipt_text

__all__ = [
    "AllProvidersFailed",
    "ParserLocale",
    "ProviderError",
    "RecognitionEngine",
    "get_recognition_engine",
    "parse_receipt_text",
    "recognize",
]
