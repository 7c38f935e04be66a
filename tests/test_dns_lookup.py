"""Tests for TXT lookup outcome classification."""

import asyncio

import dns.exception
import dns.resolver
import pytest

from mcp_lookup.dns_lookup import DnsResolver, LookupOutcome, TxtLookup


class FakeTxt:
    def __init__(self, *chunks: bytes):
        self.strings = chunks


class FakeAddress:
    def __init__(self, text: str):
        self.text = text

    def to_text(self) -> str:
        return self.text


def resolver_with(monkeypatch, behaviour, timeout=5.0):
    resolver = DnsResolver(timeout=timeout, nameservers=["192.0.2.53"])

    async def resolve(name, rdtype, lifetime=None):
        return await behaviour(name, rdtype)

    monkeypatch.setattr(resolver._resolver, "resolve", resolve)
    return resolver


class TestLookupTxt:
    @pytest.mark.asyncio
    async def test_found_joins_chunked_strings(self, monkeypatch):
        async def behaviour(name, rdtype):
            return [FakeTxt(b"v=mcp1 domain=example.com ", b"token=abc"), FakeTxt(b"other")]

        lookup = await resolver_with(monkeypatch, behaviour).lookup_txt("_mcp-verify.example.com")

        assert lookup.outcome == LookupOutcome.FOUND
        assert lookup.records[0] == "v=mcp1 domain=example.com token=abc"
        assert lookup.contains("abc")
        assert not lookup.contains("")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [dns.resolver.NXDOMAIN, dns.resolver.NoAnswer])
    async def test_absent(self, monkeypatch, error):
        async def behaviour(name, rdtype):
            raise error()

        lookup = await resolver_with(monkeypatch, behaviour).lookup_txt("_mcp-verify.example.com")
        assert lookup.outcome == LookupOutcome.ABSENT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [dns.exception.Timeout, dns.resolver.NoNameservers])
    async def test_transient(self, monkeypatch, error):
        async def behaviour(name, rdtype):
            raise error()

        lookup = await resolver_with(monkeypatch, behaviour).lookup_txt("_mcp-verify.example.com")
        assert lookup.outcome == LookupOutcome.TRANSIENT

    @pytest.mark.asyncio
    async def test_hard_deadline(self, monkeypatch):
        async def behaviour(name, rdtype):
            await asyncio.sleep(10)

        lookup = await resolver_with(monkeypatch, behaviour, timeout=0.01).lookup_txt("slow.example.com")
        assert lookup.outcome == LookupOutcome.TRANSIENT
        assert lookup.error == "timeout"


class TestResolveAddresses:
    @pytest.mark.asyncio
    async def test_collects_a_and_aaaa(self, monkeypatch):
        async def behaviour(name, rdtype):
            if rdtype == "AAAA":
                raise dns.resolver.NoAnswer()
            return [FakeAddress("93.184.216.34")]

        addresses = await resolver_with(monkeypatch, behaviour).resolve_addresses("example.com")
        assert addresses == ["93.184.216.34"]


def test_contains_is_exact_substring():
    lookup = TxtLookup(name="n", outcome=LookupOutcome.FOUND, records=["token=ABC"])
    assert lookup.contains("ABC")
    assert not lookup.contains("abc")
