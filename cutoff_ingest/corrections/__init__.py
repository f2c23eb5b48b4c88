"""OCR/format correction rules and the text normalizer."""
