"""
Shared fixtures: reference tables, sample broker exports and a factory for
processed transactions.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import pytest

from core.config import ReferenceData
from core.hashing import transaction_content_hash
from lib.countries import CountryTable
from lib.ecb_rates import CurrencyConverter, RateTable
from lib.parsers.canonical_transaction import (
    BuySell,
    ProcessedTransaction,
    TransactionSubType,
    TransactionType,
)


RATE_OBSERVATIONS = {
    "root": {
        "Obs": [
            {"_TIME_PERIOD": "2024-01-15", "_CCY": "USD", "_OBS_VALUE": "1.25"},
            {"_TIME_PERIOD": "2024-02-01", "_CCY": "USD", "_OBS_VALUE": "1.20"},
            {"_TIME_PERIOD": "2024-02-15", "_CCY": "USD", "_OBS_VALUE": "1.20"},
            {"_TIME_PERIOD": "2024-03-01", "_CCY": "USD", "_OBS_VALUE": "1.20"},
            {"_TIME_PERIOD": "2024-07-05", "_CCY": "USD", "_OBS_VALUE": "1.25"},
            {"_TIME_PERIOD": "2024-01-15", "_CCY": "GBP", "_OBS_VALUE": "0.85"},
        ]
    }
}

COUNTRY_RECORDS = [
    {"country": "United States of America", "alpha2": "US", "alpha3": "USA", "numeric": "840"},
    {"country": "Germany", "alpha2": "DE", "alpha3": "DEU", "numeric": "276"},
    {"country": "Netherlands", "alpha2": "NL", "alpha3": "NLD", "numeric": "528"},
    {"country": "Ireland", "alpha2": "IE", "alpha3": "IRL", "numeric": "372"},
    {"country": "Portugal", "alpha2": "PT", "alpha3": "PRT", "numeric": "620"},
    {"country": "United Kingdom", "alpha2": "GB", "alpha3": "GBR", "numeric": "826"},
]

# DeGiro account statement, Portuguese locale. Nine rows:
# deposit, buy, its commission, dividend, withholding tax (positive in file),
# connectivity fee (positive in file), product change, unrecognized text, option sale.
DEGIRO_CSV = (
    "Data,Hora,Data Valor,Produto,ISIN,Descrição,Taxa de Câmbio,Variação,,Saldo,,ID da Ordem\n"
    "02-01-2024,10:00,02-01-2024,,,Depósito,,EUR,\"2000,00\",EUR,\"2000,00\",\n"
    "15-01-2024,09:30,15-01-2024,APPLE INC,US0378331005,\"Compra 10 Apple Inc@150,5 USD (US0378331005)\",\"1,2500\",USD,\"-1505,00\",USD,\"-1505,00\",abc-123\n"
    "15-01-2024,09:30,15-01-2024,APPLE INC,US0378331005,Comissões de transação DEGIRO e/ou taxas de terceiros,,EUR,\"-2,00\",EUR,\"1998,00\",abc-123\n"
    "01-02-2024,07:00,31-01-2024,APPLE INC,US0378331005,Dividendo,,USD,\"2,40\",USD,\"2,40\",\n"
    "01-02-2024,07:00,31-01-2024,APPLE INC,US0378331005,Imposto sobre dividendo,,USD,\"0,36\",USD,\"2,04\",\n"
    "05-03-2024,12:00,05-03-2024,,,Custo de Conectividade DEGIRO 2024 (Euronext Amsterdam - EAM),,EUR,\"2,50\",EUR,\"1995,50\",\n"
    "06-03-2024,08:00,06-03-2024,APPLE INC,US0378331005,Mudança de produto,,USD,\"0,00\",USD,\"2,04\",\n"
    "07-03-2024,08:00,07-03-2024,,,Rendimento misterioso sem categoria,,EUR,\"1,00\",EUR,\"1996,50\",\n"
    "10-03-2024,15:45,10-03-2024,FLW P31.00 18MAR22,,\"Venda 1 FLW P31.00 18MAR22@1,2 EUR\",,EUR,\"120,00\",EUR,\"2116,50\",opt-9\n"
)

IBKR_XML = """<?xml version="1.0" encoding="UTF-8"?>
<FlexQueryResponse queryName="taxfolio" type="AF">
  <FlexStatements count="1">
    <FlexStatement accountId="U1234567" fromDate="20240101" toDate="20241231">
      <Trades>
        <Trade assetCategory="STK" symbol="AAPL" description="APPLE INC" isin="US0378331005" multiplier="1"
               dateTime="20240115;093000" quantity="10" tradePrice="150.5" tradeMoney="1505" currency="USD"
               exchange="NASDAQ" ibCommission="-1.00" buySell="BUY" ibOrderID="1001" putCall="" levelOfDetail="EXECUTION"/>
        <Trade assetCategory="STK" symbol="AAPL" description="APPLE INC" isin="US0378331005" multiplier="1"
               dateTime="20240301;150000" quantity="-4" tradePrice="180" tradeMoney="-720" currency="USD"
               exchange="NASDAQ" ibCommission="-1.00" buySell="SELL" ibOrderID="1002" putCall="" levelOfDetail="EXECUTION"/>
        <Trade assetCategory="OPT" symbol="AAPL  240621P00150000" description="AAPL 21JUN24 150 P" isin="" multiplier="100"
               dateTime="20240310;120000" quantity="-1" tradePrice="2.5" tradeMoney="-250" currency="USD"
               exchange="CBOE" ibCommission="-0.70" buySell="SELL" ibOrderID="1003" putCall="P" levelOfDetail="EXECUTION"/>
        <Trade assetCategory="CASH" symbol="EUR.USD" description="EUR.USD" isin="" multiplier="1"
               dateTime="20240110;100000" quantity="1000" tradePrice="1.09" tradeMoney="1090" currency="USD"
               exchange="IDEALFX" ibCommission="-2" buySell="BUY" ibOrderID="1004" putCall="" levelOfDetail="EXECUTION"/>
        <Trade assetCategory="BOND" symbol="T 4 02/15/34" description="US TREASURY" isin="US91282CJZ59" multiplier="1"
               dateTime="20240120;100000" quantity="1000" tradePrice="99.5" tradeMoney="995" currency="USD"
               exchange="BONDDESK" ibCommission="-1" buySell="BUY" ibOrderID="1005" putCall="" levelOfDetail="EXECUTION"/>
        <Trade assetCategory="STK" symbol="AAPL" description="APPLE INC" isin="US0378331005" multiplier="1"
               dateTime="20240115;093000" quantity="10" tradePrice="150.5" tradeMoney="1505" currency="USD"
               exchange="NASDAQ" ibCommission="-1.00" buySell="BUY" ibOrderID="1001" putCall="" levelOfDetail="ORDER"/>
      </Trades>
      <CashTransactions>
        <CashTransaction type="Dividends" description="AAPL(US0378331005) CASH DIVIDEND USD 0.24 PER SHARE"
                         dateTime="20240215" amount="2.40" currency="USD" levelOfDetail="DETAIL" isin="US0378331005" symbol="AAPL"/>
        <CashTransaction type="Withholding Tax" description="AAPL(US0378331005) CASH DIVIDEND - US TAX"
                         dateTime="20240215" amount="-0.36" currency="USD" levelOfDetail="DETAIL" isin="US0378331005" symbol="AAPL"/>
        <CashTransaction type="Dividends" description="AAPL DIVIDEND SUMMARY"
                         dateTime="20240215" amount="2.40" currency="USD" levelOfDetail="SUMMARY" isin="US0378331005" symbol="AAPL"/>
        <CashTransaction type="Deposits/Withdrawals" description="CASH RECEIPTS / ELECTRONIC FUND TRANSFERS"
                         dateTime="20240102" amount="5000" currency="EUR" levelOfDetail="DETAIL" isin="" symbol=""/>
        <CashTransaction type="Deposits/Withdrawals" description="DISBURSEMENT INITIATED BY JOHN DOE"
                         dateTime="20240601;101500" amount="-500" currency="EUR" levelOfDetail="DETAIL" isin="" symbol=""/>
        <CashTransaction type="Other Fees" description="NYSE MARKET DATA FEE"
                         dateTime="20240705" amount="-10" currency="USD" levelOfDetail="DETAIL" isin="" symbol=""/>
        <CashTransaction type="Broker Interest Received" description="EUR CREDIT INT FOR MAY-2024"
                         dateTime="20240603" amount="3.12" currency="EUR" levelOfDetail="DETAIL" isin="" symbol=""/>
      </CashTransactions>
    </FlexStatement>
  </FlexStatements>
</FlexQueryResponse>
"""


@pytest.fixture
def rate_table():
    return RateTable.from_observations(RATE_OBSERVATIONS)


@pytest.fixture
def converter(rate_table):
    return CurrencyConverter(rate_table)


@pytest.fixture
def countries():
    return CountryTable.from_records(COUNTRY_RECORDS)


@pytest.fixture
def reference(rate_table, countries):
    return ReferenceData.build(rate_table, countries)


@pytest.fixture
def degiro_csv():
    return DEGIRO_CSV.encode('utf-8')


@pytest.fixture
def ibkr_xml():
    return IBKR_XML.encode('utf-8')


def build_processed(
    day: date,
    transaction_type: TransactionType = TransactionType.STOCK,
    buy_sell: Optional[BuySell] = BuySell.BUY,
    quantity="0",
    price="0",
    amount=None,
    isin: Optional[str] = "US0378331005",
    product_name: str = "APPLE INC",
    subtype: TransactionSubType = TransactionSubType.NONE,
    currency: str = "EUR",
    rate="1",
    commission="0",
    country_code: str = "US",
    order_id: str = "",
    multiplier="1",
    raw_text: Optional[str] = None,
    rate_missing: bool = False,
) -> ProcessedTransaction:
    """ProcessedTransaction with trade amounts derived from quantity x price."""
    quantity, price, rate = Decimal(quantity), Decimal(price), Decimal(rate)
    commission, multiplier = Decimal(commission), Decimal(multiplier)
    if amount is None:
        gross = quantity * price * multiplier
        amount = -gross if buy_sell == BuySell.BUY else gross
    amount = Decimal(amount)
    if raw_text is None:
        side = buy_sell.value if buy_sell else transaction_type.value
        raw_text = f"{side} {quantity} {product_name} @ {price} {amount}"
    transaction_date = datetime(day.year, day.month, day.day)
    return ProcessedTransaction(
        source="test",
        transaction_date=transaction_date,
        product_name=product_name,
        isin=isin,
        quantity=quantity,
        price=price,
        multiplier=multiplier,
        currency=currency,
        amount=amount,
        source_amount=amount,
        transaction_type=transaction_type,
        subtype=subtype,
        buy_sell=buy_sell if transaction_type.is_trade() else None,
        order_id=order_id,
        commission=commission,
        raw_text=raw_text,
        exchange_rate=rate,
        amount_reporting=amount / rate,
        commission_reporting=commission / rate,
        country_code=country_code,
        content_hash=transaction_content_hash(transaction_date, raw_text, amount),
        rate_missing=rate_missing,
    )


@pytest.fixture
def make_processed():
    return build_processed
