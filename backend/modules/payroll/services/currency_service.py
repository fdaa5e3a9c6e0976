# backend/modules/payroll/services/currency_service.py

"""
Currency conversion for payroll amounts.

Rates are held against USD. A cross rate is derived through USD and rounded
to six decimal places; converted amounts are rounded to the target
currency's minor unit.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

from ..exceptions import CurrencyConversionError

logger = logging.getLogger(__name__)

RATE_PLACES = Decimal("0.000001")

# Units of currency per 1 USD
DEFAULT_USD_RATES: Dict[str, Decimal] = {
    "USD": Decimal("1.0"),
    "EUR": Decimal("0.85"),
    "GBP": Decimal("0.73"),
    "INR": Decimal("83.0"),
    "CAD": Decimal("1.35"),
    "AUD": Decimal("1.50"),
    "JPY": Decimal("150.0"),
    "SGD": Decimal("1.35"),
    "AED": Decimal("3.67"),
    "CHF": Decimal("0.88"),
    "CNY": Decimal("7.25"),
    "SEK": Decimal("10.5"),
    "NOK": Decimal("10.8"),
    "DKK": Decimal("6.85"),
    "PLN": Decimal("4.15"),
    "HUF": Decimal("360.0"),
    "BRL": Decimal("5.0"),
    "MXN": Decimal("17.0"),
    "ZAR": Decimal("18.5"),
    "KRW": Decimal("1320.0"),
    "MYR": Decimal("4.65"),
    "PHP": Decimal("56.0"),
    "SAR": Decimal("3.75"),
    "KWD": Decimal("0.31"),
    "PKR": Decimal("280.0"),
    "LKR": Decimal("320.0"),
    "HKD": Decimal("7.8"),
    "NZD": Decimal("1.65"),
}


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    name: str
    symbol: str
    decimal_places: int = 2


CURRENCY_INFO: Dict[str, CurrencyInfo] = {
    info.code: info
    for info in (
        CurrencyInfo("USD", "US Dollar", "$"),
        CurrencyInfo("EUR", "Euro", "€"),
        CurrencyInfo("GBP", "British Pound", "£"),
        CurrencyInfo("INR", "Indian Rupee", "₹"),
        CurrencyInfo("CAD", "Canadian Dollar", "C$"),
        CurrencyInfo("AUD", "Australian Dollar", "A$"),
        CurrencyInfo("JPY", "Japanese Yen", "¥", 0),
        CurrencyInfo("SGD", "Singapore Dollar", "S$"),
        CurrencyInfo("AED", "UAE Dirham", "د.إ"),
        CurrencyInfo("CHF", "Swiss Franc", "CHF"),
        CurrencyInfo("CNY", "Chinese Yuan", "¥"),
        CurrencyInfo("SEK", "Swedish Krona", "kr"),
        CurrencyInfo("NOK", "Norwegian Krone", "kr"),
        CurrencyInfo("DKK", "Danish Krone", "kr"),
        CurrencyInfo("PLN", "Polish Zloty", "zł"),
        CurrencyInfo("HUF", "Hungarian Forint", "Ft", 0),
        CurrencyInfo("BRL", "Brazilian Real", "R$"),
        CurrencyInfo("MXN", "Mexican Peso", "$"),
        CurrencyInfo("ZAR", "South African Rand", "R"),
        CurrencyInfo("KRW", "South Korean Won", "₩", 0),
        CurrencyInfo("MYR", "Malaysian Ringgit", "RM"),
        CurrencyInfo("PHP", "Philippine Peso", "₱"),
        CurrencyInfo("SAR", "Saudi Riyal", "﷼"),
        CurrencyInfo("KWD", "Kuwaiti Dinar", "KD", 3),
        CurrencyInfo("PKR", "Pakistani Rupee", "₨"),
        CurrencyInfo("LKR", "Sri Lankan Rupee", "Rs"),
        CurrencyInfo("HKD", "Hong Kong Dollar", "HK$"),
        CurrencyInfo("NZD", "New Zealand Dollar", "NZ$"),
    )
}


class CurrencyService:
    """In-memory exchange-rate service"""

    def __init__(self, usd_rates: Optional[Dict[str, Decimal]] = None):
        rates = usd_rates if usd_rates is not None else DEFAULT_USD_RATES
        self.usd_rates = {code.upper(): Decimal(str(rate)) for code, rate in rates.items()}

    def _rate_for(self, currency: str) -> Decimal:
        code = (currency or "").upper()
        rate = self.usd_rates.get(code)
        if rate is None or rate <= 0:
            raise CurrencyConversionError(f"Unsupported currency: {currency}")
        return rate

    def get_currency_info(self, currency: str) -> CurrencyInfo:
        code = currency.upper()
        return CURRENCY_INFO.get(code, CurrencyInfo(code, code, code))

    async def get_exchange_rate(
        self, from_currency: str, to_currency: str, as_of: Optional[date] = None
    ) -> Decimal:
        """Rate to multiply a ``from_currency`` amount by, 6 dp."""
        if from_currency.upper() == to_currency.upper():
            return Decimal("1.000000")
        rate = self._rate_for(to_currency) / self._rate_for(from_currency)
        return rate.quantize(RATE_PLACES, rounding=ROUND_HALF_UP)

    async def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
        as_of: Optional[date] = None,
    ) -> Tuple[Decimal, Decimal]:
        """
        Convert an amount between currencies.

        Returns:
            (converted_amount, rate) with the amount rounded to the target
            currency's decimal places
        """
        rate = await self.get_exchange_rate(from_currency, to_currency, as_of)
        places = self.get_currency_info(to_currency).decimal_places
        quantum = Decimal(1).scaleb(-places)
        converted = (Decimal(str(amount)) * rate).quantize(quantum, rounding=ROUND_HALF_UP)
        logger.debug(f"Converted {amount} {from_currency} -> {converted} {to_currency} @ {rate}")
        return converted, rate

    def format_amount(self, amount: Decimal, currency: str) -> str:
        info = self.get_currency_info(currency)
        quantum = Decimal(1).scaleb(-info.decimal_places)
        value = Decimal(str(amount)).quantize(quantum, rounding=ROUND_HALF_UP)
        return f"{info.symbol}{value:,}"

    def get_supported_currencies(self) -> List[str]:
        return sorted(self.usd_rates)

    def is_supported(self, currency: str) -> bool:
        return (currency or "").upper() in self.usd_rates
