"""
Data Validator Module
Responsible for validating and cleaning values read from the contract registry dumps.
"""

import re
from datetime import datetime
from typing import Optional, Tuple
import logging
from decimal import Decimal, InvalidOperation

logger = logging.getLogger(__name__)

NULL_MARKERS = ["NULL", "null", "N/A", ""]


class DataValidator:
    """
    Validate and clean values from the dumps.
    """

    @staticmethod
    def validate_ico(ico: str) -> Tuple[bool, Optional[str]]:
        """
        Validate a Czech company ID (IČO) with checksum validation.

        IDs published without leading zeros are padded to 8 digits.

        Args:
            ico: IČO string to validate

        Returns:
            Tuple of (is_valid, cleaned_ico)
        """
        if not ico or str(ico).strip() in NULL_MARKERS:
            return False, None

        ico_clean = re.sub(r'\s', '', str(ico).strip())

        if not ico_clean.isdigit() or len(ico_clean) > 8:
            return False, None

        ico_clean = ico_clean.zfill(8)

        # Weights 8..2 over the first seven digits
        check_sum = sum(int(ico_clean[i]) * (8 - i) for i in range(7))
        remainder = check_sum % 11
        if remainder == 0:
            check_digit = 1
        elif remainder == 1:
            check_digit = 0
        else:
            check_digit = 11 - remainder

        if int(ico_clean[7]) == check_digit:
            return True, ico_clean
        return False, None

    @staticmethod
    def normalize_date(date_str: str) -> Optional[datetime]:
        """
        Convert various date formats to a naive datetime object.

        Args:
            date_str: Date string to normalize

        Returns:
            datetime object or None if invalid
        """
        if not date_str or str(date_str).strip() in NULL_MARKERS:
            return None

        # List of date formats to try
        date_formats = [
            "%Y-%m-%d",           # YYYY-MM-DD
            "%d.%m.%Y",           # DD.MM.YYYY (Czech)
            "%d. %m. %Y",         # DD. MM. YYYY (Czech, spaced)
            "%d/%m/%Y",           # DD/MM/YYYY
            "%Y-%m-%dT%H:%M:%S",  # ISO format with time
            "%Y-%m-%d %H:%M:%S"   # DateTime format
        ]

        date_str = str(date_str).strip()

        for date_format in date_formats:
            try:
                return datetime.strptime(date_str, date_format)
            except ValueError:
                continue

        # Timestamps with fractions or offsets, e.g. 2024-03-15T10:22:33.123+01:00
        try:
            parsed = datetime.fromisoformat(date_str.replace('Z', '+00:00'))
            return parsed.replace(tzinfo=None)
        except ValueError:
            pass

        logger.warning(f"Could not parse date: {date_str}")
        return None

    @staticmethod
    def normalize_amount(amount_str: str) -> Optional[Decimal]:
        """
        Normalize monetary amounts to Decimal.

        Args:
            amount_str: Amount string to normalize

        Returns:
            Decimal amount or None if invalid
        """
        if amount_str is None or str(amount_str).strip() in NULL_MARKERS:
            return None

        try:
            # Remove currency markers and (non-breaking) spaces
            amount_clean = re.sub(r'(Kč|CZK|EUR|€|\s)', '', str(amount_str))

            # Handle Czech number format (comma as decimal separator)
            if ',' in amount_clean and '.' in amount_clean:
                # Assume format is 1.234.567,89
                amount_clean = amount_clean.replace('.', '').replace(',', '.')
            elif ',' in amount_clean:
                # Could be 1234,56 or 1,234,567
                if amount_clean.count(',') == 1 and len(amount_clean.split(',')[1]) <= 2:
                    amount_clean = amount_clean.replace(',', '.')
                else:
                    # Likely thousands separator
                    amount_clean = amount_clean.replace(',', '')

            amount = Decimal(amount_clean)
            if not amount.is_finite():
                return None
            return amount

        except (InvalidOperation, ValueError) as e:
            logger.warning(f"Could not parse amount: {amount_str} - {e}")
            return None

    @staticmethod
    def clean_text(value: Optional[str]) -> Optional[str]:
        """Collapse internal whitespace; blank and NULL markers become None."""
        if value is None:
            return None
        cleaned = re.sub(r'\s+', ' ', str(value)).strip()
        if cleaned in NULL_MARKERS:
            return None
        return cleaned
