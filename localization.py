"""
Message catalogue for user-facing provisioning texts

Loads `locales/<lang>.json` files and renders dot-notation keys with
str.format substitution. Missing keys fall back to English, then to the key
itself, so a broken catalogue never blocks a provisioning run.
"""

import os
import json
import logging
from typing import Dict, Optional, Any
from pathlib import Path

logger = logging.getLogger(__name__)

class LanguageConfig:
    """
    Translation management for owner-facing WhatsApp messages

    Features:
    - English and Hinglish catalogues
    - Fallback to English for missing translations
    - Variable substitution using format() method
    """

    _instance = None
    _initialized = False

    SUPPORTED_LANGUAGES = {
        'en': 'English',
        'hi': 'Hinglish'
    }

    FALLBACK_LANGUAGE = 'en'

    def __new__(cls):
        """Singleton pattern to ensure consistent translation loading"""
        if cls._instance is None:
            cls._instance = super(LanguageConfig, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if LanguageConfig._initialized:
            return

        self.translations: Dict[str, Dict[str, Any]] = {}
        self.locales_path = Path(__file__).parent / 'locales'
        default_language = os.getenv('DEFAULT_LANGUAGE', self.FALLBACK_LANGUAGE).lower()
        self.default_language = default_language if default_language in self.SUPPORTED_LANGUAGES else self.FALLBACK_LANGUAGE

        self._load_translations()

        LanguageConfig._initialized = True
        logger.info(f"🌍 Language system initialized - Supported: {list(self.SUPPORTED_LANGUAGES.keys())}, default: {self.default_language}")

    def _load_translations(self) -> None:
        """Load translation files from locales directory"""
        for lang_code in self.SUPPORTED_LANGUAGES:
            translation_file = self.locales_path / f"{lang_code}.json"

            try:
                with open(translation_file, 'r', encoding='utf-8') as f:
                    self.translations[lang_code] = json.load(f)
                logger.debug(f"✅ Loaded translations for {lang_code}")
            except FileNotFoundError:
                logger.warning(f"⚠️ Translation file not found: {translation_file}")
                self.translations[lang_code] = {}
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"❌ Failed to load translations for {lang_code}: {e}")
                self.translations[lang_code] = {}

    def resolve_language(self, lang_code: Optional[str]) -> str:
        if lang_code:
            base_lang = lang_code.lower().split('-')[0]
            if base_lang in self.SUPPORTED_LANGUAGES:
                return base_lang
        return self.default_language

    def get_translation(self, key: str, lang_code: Optional[str], **kwargs) -> str:
        """
        Get translation for a key with variable substitution

        Args:
            key: Translation key (e.g., 'provisioning.step_zone')
            lang_code: Target language code, None for the configured default
            **kwargs: Variables for string formatting

        Returns:
            Translated string, English fallback, or the key itself
        """
        lang_code = self.resolve_language(lang_code)

        translation = self._get_nested_translation(key, lang_code)

        if translation is None and lang_code != self.FALLBACK_LANGUAGE:
            translation = self._get_nested_translation(key, self.FALLBACK_LANGUAGE)
            logger.debug(f"Using fallback translation for key '{key}' (lang: {lang_code} -> {self.FALLBACK_LANGUAGE})")

        if translation is None:
            logger.warning(f"⚠️ No translation found for key '{key}' in any language")
            return key

        try:
            return translation.format(**kwargs) if kwargs else translation
        except (KeyError, ValueError) as e:
            logger.warning(f"⚠️ Translation formatting failed for key '{key}': {e}")
            return translation

    def _get_nested_translation(self, key: str, lang_code: str) -> Optional[str]:
        current: Any = self.translations.get(lang_code)
        for part in key.split('.'):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return None
        return current if isinstance(current, str) else None

def get_language_config() -> LanguageConfig:
    return LanguageConfig()

def t(key: str, lang_code: Optional[str] = None, **kwargs) -> str:
    """
    Translate a message key

    Example:
        t('provisioning.step_zone', 'hi', domain='sharmadhaba.in')
    """
    return get_language_config().get_translation(key, lang_code, **kwargs)
