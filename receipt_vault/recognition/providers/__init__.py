"""Text-recognition provider adapters"""
from receipt_vault.recognition.providers.base import ProviderAdapter, ProviderResponse
from receipt_vault.recognition.providers.factory import build_provider_adapters

__all__ = ["ProviderAdapter", "ProviderResponse", "build_provider_adapters"]
