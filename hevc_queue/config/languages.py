"""
ISO 639 language tables.

Stream language tags in Matroska and MP4 files are usually ISO 639-2 codes
(bibliographic "ger" or terminological "deu"), sometimes ISO 639-1 two-letter
codes. Both are resolved to an English language name, which is what the track
titles show and what the native-language comparison uses.
"""

# ISO 639-1 (2-letter) -> ISO 639-2/B (3-letter bibliographic)
ISO_639_1_TO_639_2B = {
    "ar": "ara",  # Arabic
    "bg": "bul",  # Bulgarian
    "bn": "ben",  # Bengali
    "ca": "cat",  # Catalan
    "cs": "cze",  # Czech
    "cy": "wel",  # Welsh
    "da": "dan",  # Danish
    "de": "ger",  # German
    "el": "gre",  # Greek
    "en": "eng",  # English
    "es": "spa",  # Spanish
    "et": "est",  # Estonian
    "eu": "baq",  # Basque
    "fa": "per",  # Persian
    "fi": "fin",  # Finnish
    "fr": "fre",  # French
    "ga": "gle",  # Irish
    "gl": "glg",  # Galician
    "he": "heb",  # Hebrew
    "hi": "hin",  # Hindi
    "hr": "hrv",  # Croatian
    "hu": "hun",  # Hungarian
    "id": "ind",  # Indonesian
    "is": "ice",  # Icelandic
    "it": "ita",  # Italian
    "ja": "jpn",  # Japanese
    "ko": "kor",  # Korean
    "la": "lat",  # Latin
    "lt": "lit",  # Lithuanian
    "lv": "lav",  # Latvian
    "ms": "may",  # Malay
    "nl": "dut",  # Dutch
    "no": "nor",  # Norwegian
    "pl": "pol",  # Polish
    "pt": "por",  # Portuguese
    "ro": "rum",  # Romanian
    "ru": "rus",  # Russian
    "sk": "slo",  # Slovak
    "sl": "slv",  # Slovenian
    "sr": "srp",  # Serbian
    "sv": "swe",  # Swedish
    "ta": "tam",  # Tamil
    "th": "tha",  # Thai
    "tl": "tgl",  # Tagalog
    "tr": "tur",  # Turkish
    "uk": "ukr",  # Ukrainian
    "ur": "urd",  # Urdu
    "vi": "vie",  # Vietnamese
    "zh": "chi",  # Chinese
}

# ISO 639-2/T codes that differ from their bibliographic form.
ISO_639_2T_TO_639_2B = {
    "ces": "cze",
    "cym": "wel",
    "deu": "ger",
    "ell": "gre",
    "eus": "baq",
    "fas": "per",
    "fra": "fre",
    "isl": "ice",
    "msa": "may",
    "nld": "dut",
    "ron": "rum",
    "slk": "slo",
    "zho": "chi",
}

# ISO 639-2/B -> English language name
ISO_639_2B_NAMES = {
    "ara": "Arabic",
    "baq": "Basque",
    "ben": "Bengali",
    "bul": "Bulgarian",
    "cat": "Catalan",
    "chi": "Chinese",
    "cze": "Czech",
    "dan": "Danish",
    "dut": "Dutch",
    "eng": "English",
    "est": "Estonian",
    "fin": "Finnish",
    "fre": "French",
    "ger": "German",
    "gle": "Irish",
    "glg": "Galician",
    "gre": "Greek",
    "heb": "Hebrew",
    "hin": "Hindi",
    "hrv": "Croatian",
    "hun": "Hungarian",
    "ice": "Icelandic",
    "ind": "Indonesian",
    "ita": "Italian",
    "jpn": "Japanese",
    "kor": "Korean",
    "lat": "Latin",
    "lav": "Latvian",
    "lit": "Lithuanian",
    "may": "Malay",
    "nor": "Norwegian",
    "per": "Persian",
    "pol": "Polish",
    "por": "Portuguese",
    "rum": "Romanian",
    "rus": "Russian",
    "slo": "Slovak",
    "slv": "Slovenian",
    "spa": "Spanish",
    "srp": "Serbian",
    "swe": "Swedish",
    "tam": "Tamil",
    "tgl": "Tagalog",
    "tha": "Thai",
    "tur": "Turkish",
    "ukr": "Ukrainian",
    "und": "Unknown",
    "urd": "Urdu",
    "vie": "Vietnamese",
    "wel": "Welsh",
}

UNKNOWN_LANGUAGE = "Unknown"
