"""Broker adapters and the parser factory."""

from typing import Union

from lib.parsers.base import BrokerParser
from lib.parsers.degiro_parser import DegiroParser
from lib.parsers.ibkr_flex_parser import IbkrFlexParser

PARSERS = {
    DegiroParser.source: DegiroParser,
    IbkrFlexParser.source: IbkrFlexParser,
}


def get_parser(source: str) -> BrokerParser:
    """
    Return a fresh adapter for a broker source name ("degiro", "ibkr").

    Raises:
        ValueError: If no adapter exists for the source.
    """
    parser_cls = PARSERS.get((source or '').strip().lower())
    if parser_cls is None:
        raise ValueError(f"No parser available for source: {source}")
    return parser_cls()


def detect_source(data: Union[bytes, str]) -> str:
    """Sniff the export format: XML payloads are IBKR Flex, anything else DeGiro CSV."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    head = data[:512].lstrip(b'\xef\xbb\xbf').lstrip()
    if head.startswith(b'<'):
        return IbkrFlexParser.source
    return DegiroParser.source


__all__ = ['BrokerParser', 'DegiroParser', 'IbkrFlexParser', 'get_parser', 'detect_source']
