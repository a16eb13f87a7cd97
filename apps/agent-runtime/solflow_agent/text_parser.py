"""Best-effort extraction of intent fields from free-form text.

Each ``parse_*_text`` function is a pure ``text -> dict`` rule set returning
camelCase field names. ``parse_intent_text`` picks exactly one of them:
a canonical intent type named verbatim wins, then keyword categories, then
trial parses. Nothing here raises; unparseable text yields ``{}``.
"""

from __future__ import annotations

import re
from typing import Any, Callable

from .base58 import parse_address
from .tokens import (
    SOL_MINT,
    parse_mint_or_known_symbol_candidate,
    parse_mint_or_symbol_candidate,
    sanitize_token_candidate,
)
from .amounts import parse_positive_number

_F = re.IGNORECASE | re.ASCII

ADDR = r"[1-9A-HJ-NP-Za-km-z]{32,44}"
TOKEN = rf"(?:{ADDR}|[A-Za-z][A-Za-z0-9._-]{{1,15}})"
NUM = r"[0-9]+(?:\.[0-9]+)?"

ADDRESS_FINDER = re.compile(rf"\b{ADDR}\b", _F)

SWAP_KEYWORDS = re.compile(r"(swap|兑换|换成|换到|互换|兑成|兑为)", _F)
TRANSFER_KEYWORDS = re.compile(r"(transfer|send|转账|转到|发送|打款)", _F)
STAKE_OPERATION_KEYWORDS = re.compile(
    r"(delegate|delegation|deactivate|unstake|withdraw|authorize|change\s+authority|rotate\s+authority"
    r"|委托质押|解除质押|提取质押|提取.*质押|质押.*提取|更换.*权限|变更.*权限|授权.*质押)",
    _F,
)
READ_KEYWORDS = re.compile(r"(balance|余额|portfolio|资产|持仓)", _F)
PORTFOLIO_KEYWORDS = re.compile(r"(portfolio|资产|持仓|all\s+balances?|全部余额|token\s+positions?)", _F)
LENDING_MARKETS_KEYWORDS = re.compile(r"(lending\s+markets?|markets?.*lending|kamino\s+markets?|借贷市场|贷款市场|借贷池)", _F)
LENDING_POSITIONS_KEYWORDS = re.compile(r"(lending|lend\s+positions?|loan\s+positions?|借贷|借款|贷款|kamino)", _F)
DEFI_POSITIONS_KEYWORDS = re.compile(r"(defi|de-fi|protocol\s+positions?|协议仓位|staking|stake|质押|farm|yield|收益)", _F)
ORCA_POSITIONS_KEYWORDS = re.compile(
    r"(orca.*(whirlpool|lp|liquidity|position|positions|仓位|流动性)|(whirlpool|lp|liquidity|position|positions|仓位|流动性).*orca)",
    _F,
)
METEORA_POSITIONS_KEYWORDS = re.compile(
    r"((meteora|dlmm).*(lp|liquidity|position|positions|仓位|流动性)|(lp|liquidity|position|positions|仓位|流动性).*(meteora|dlmm))",
    _F,
)

_LP_ADD = r"(\badd\b|\bincrease\b|\bprovide\b|\bdeposit\b|增加|添加|注入)"
_LP_REMOVE = r"(\bremove\b|\bdecrease\b|\bwithdraw\b|\breduce\b|减少|移除|提取)"
_LIQ = r"(liquidity|lp|流动性)"
ORCA_INCREASE_KEYWORDS = re.compile(rf"(orca.*{_LP_ADD}.*{_LIQ}|{_LIQ}.*(orca).*{_LP_ADD})", _F)
ORCA_DECREASE_KEYWORDS = re.compile(rf"(orca.*{_LP_REMOVE}.*{_LIQ}|{_LIQ}.*(orca).*{_LP_REMOVE})", _F)
ORCA_OPEN_KEYWORDS = re.compile(r"(orca.*\bopen\b|\bopen\b.*orca|orca.*开仓|开仓.*orca)", _F)
ORCA_CLOSE_KEYWORDS = re.compile(r"(orca.*\bclose\b|\bclose\b.*orca|orca.*平仓|平仓.*orca)", _F)
ORCA_HARVEST_KEYWORDS = re.compile(
    r"(orca.*(\bharvest\b|\bcollect\b|\bclaim\b|领取|收获)|(\bharvest\b|\bcollect\b|\bclaim\b|领取|收获).*orca)", _F
)
METEORA_ADD_KEYWORDS = re.compile(rf"((meteora|dlmm).*{_LP_ADD}|{_LP_ADD}.*(meteora|dlmm))", _F)
METEORA_REMOVE_KEYWORDS = re.compile(rf"((meteora|dlmm).*{_LP_REMOVE}|{_LP_REMOVE}.*(meteora|dlmm))", _F)

_DEPOSIT = r"\bdeposit\b|\bsupply\b|\blend\b|存入|出借|借出"
_BORROW = r"\bborrow\b|\bborrowed\b|\bloan\b|借入|借款"
_WITHDRAW = r"\bwithdraw\b|\bredeem\b|取回|赎回|提取"
_REPAY = r"\brepay\b|还款|偿还|归还"
KAMINO_DEPOSIT_KEYWORDS = re.compile(rf"(kamino.*({_DEPOSIT})|({_DEPOSIT}).*kamino)", _F)
KAMINO_BORROW_KEYWORDS = re.compile(rf"(kamino.*({_BORROW})|({_BORROW}).*kamino)", _F)
KAMINO_WITHDRAW_KEYWORDS = re.compile(rf"(kamino.*({_WITHDRAW})|({_WITHDRAW}).*kamino)", _F)
KAMINO_REPAY_KEYWORDS = re.compile(rf"(kamino.*({_REPAY})|({_REPAY}).*kamino)", _F)
KAMINO_DEPOSIT_AND_BORROW_KEYWORDS = re.compile(
    rf"(kamino.*({_DEPOSIT}).*({_BORROW})|kamino.*({_BORROW}).*({_DEPOSIT}))", _F
)
KAMINO_REPAY_AND_WITHDRAW_KEYWORDS = re.compile(
    rf"(kamino.*({_REPAY}).*({_WITHDRAW})|kamino.*({_WITHDRAW}).*({_REPAY}))", _F
)

HAS_EXECUTE_HINT = re.compile(
    r"(确认主网执行|确认执行|继续执行|直接执行|立即执行|现在执行|马上执行|execute|submit|live\s+order|real\s+order|\bnow\b.*\bexecute\b)",
    _F,
)
HAS_SIMULATE_HINT = re.compile(r"(先模拟|模拟一下|先仿真|先dry\s*run|dry\s*run|simulate|先试跑|先试一下|先预演|先演练)", _F)
HAS_ANALYSIS_HINT = re.compile(r"(先分析|分析一下|先评估|先看分析|analysis|analyze|先看一下|先检查)", _F)
SIMULATE_FIRST_HINT = re.compile(r"(先模拟|先仿真|先dry\s*run|先试跑|先试一下|先预演|先演练)", _F)
ANALYSIS_FIRST_HINT = re.compile(r"(先分析|先看一下|先检查)", _F)
RUN_MODES = ("analysis", "simulate", "execute")

ORCA_DEFAULT_DEXES = ("Orca V2", "Orca Whirlpool")
METEORA_DEFAULT_DEXES = ("Meteora DLMM",)
RAYDIUM_DEFAULT_DEXES = ("Raydium CLMM", "Raydium CPMM")

_TO_ADDRESS = re.compile(rf"(?:\bto\b|->|=>|到|给)\s*({ADDR})", _F)
_AMOUNT_RAW = re.compile(r"\bamountRaw\s*[=:]\s*([0-9]+)\b", _F)
_AMOUNT_RAW_SUFFIX = re.compile(r"\b([0-9]+)\s*raw\b", _F)
_AMOUNT_UI = re.compile(rf"\b(?:amount|amountUi)\s*[=:]\s*({NUM})\b", _F)
_AMOUNT_SOL = re.compile(rf"\bamountSol\s*[=:]\s*({NUM})\b", _F)
_AMOUNT_SOL_SUFFIX = re.compile(rf"({NUM})\s*sol\b", _F)
_UI_WITH_TOKEN = re.compile(rf"({NUM})\s*({TOKEN})\b", _F)
_SLIPPAGE_BPS = re.compile(r"\bslippageBps\s*[=:]\s*([0-9]+)\b", _F)
_SLIPPAGE_PCT = re.compile(rf"(?:\bslippage\s*[=:]?|滑点)\s*({NUM})\s*%", _F)
_PERCENT = re.compile(rf"(?<![0-9.])({NUM})\s*%", _F)


def _search(pattern: str | re.Pattern[str], text: str) -> str | None:
    match = re.search(pattern, text, _F) if isinstance(pattern, str) else pattern.search(text)
    return match.group(1) if match else None


def _field(name: str, text: str, value: str = ADDR) -> str | None:
    return _search(rf"\b{name}\s*[=:]\s*({value})\b", text)


def _flag(name: str, value: str, text: str) -> bool:
    return re.search(rf"\b{name}\s*[=:]\s*{value}\b", text, _F) is not None


def find_addresses(text: str) -> list[str]:
    return ADDRESS_FINDER.findall(text)


def unique_strings(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        normalized = value.strip()
        if normalized and normalized not in seen:
            seen.add(normalized)
            out.append(normalized)
    return out


def split_dex_labels(value: str) -> list[str]:
    return unique_strings(re.split(r"[,，|]", value))


def dexes_for_protocol_keyword(keyword: str) -> list[str] | None:
    lower = keyword.lower()
    if lower == "orca":
        return list(ORCA_DEFAULT_DEXES)
    if lower in ("meteora", "dlmm"):
        return list(METEORA_DEFAULT_DEXES)
    if lower == "raydium":
        return list(RAYDIUM_DEFAULT_DEXES)
    return None


def swap_type_for_protocol_keyword(keyword: str) -> str | None:
    return {
        "orca": "solana.swap.orca",
        "meteora": "solana.swap.meteora",
        "dlmm": "solana.swap.meteora",
        "raydium": "solana.swap.raydium",
        "jupiter": "solana.swap.jupiter",
    }.get(keyword.lower())


def default_dexes_for_type(intent_type: str) -> list[str] | None:
    if intent_type == "solana.swap.orca":
        return list(ORCA_DEFAULT_DEXES)
    if intent_type == "solana.swap.meteora":
        return list(METEORA_DEFAULT_DEXES)
    return None


def _slippage_bps(text: str) -> int | None:
    explicit = _search(_SLIPPAGE_BPS, text)
    if explicit is not None:
        return int(explicit)
    pct = _search(_SLIPPAGE_PCT, text)
    if pct is not None:
        value = parse_positive_number(pct)
        if value is not None:
            return round(value * 100)
    return None


def _percent_bps(text: str) -> int | None:
    """First bare percentage that is not a slippage setting, in bps."""
    stripped = _SLIPPAGE_PCT.sub(" ", text)
    pct = _search(_PERCENT, stripped)
    if pct is not None:
        value = parse_positive_number(pct)
        if value is not None and value <= 100:
            return round(value * 100)
    return None


def parse_ui_amount_with_token(text: str) -> dict[str, Any]:
    """First ``<number> <token>`` pair whose token is a recognisable mint or symbol."""
    parsed: dict[str, Any] = {}
    for match in _UI_WITH_TOKEN.finditer(text):
        amount_ui, token_candidate = match.group(1), match.group(2)
        candidate = parse_mint_or_symbol_candidate(token_candidate)
        if not candidate:
            continue
        parsed["amountUi"] = amount_ui
        parsed["inputMint"] = candidate
        label = sanitize_token_candidate(token_candidate).upper()
        if candidate == SOL_MINT or label in ("SOL", "WSOL"):
            amount_sol = parse_positive_number(amount_ui)
            if amount_sol is not None:
                parsed["amountSol"] = amount_sol
        break
    return parsed


def _amount_sol(text: str) -> float | None:
    raw = _search(_AMOUNT_SOL, text) or _search(_AMOUNT_SOL_SUFFIX, text)
    return parse_positive_number(raw) if raw is not None else None


def parse_transfer_text(text: str) -> dict[str, Any]:
    parsed: dict[str, Any] = {"intentType": "solana.transfer.sol"}
    to_address = _search(_TO_ADDRESS, text)
    if not to_address:
        addresses = find_addresses(text)
        to_address = addresses[-1] if addresses else None
    if to_address:
        parsed["toAddress"] = to_address
    token_raw = _field("tokenMint", text, TOKEN)
    token_mint = parse_mint_or_symbol_candidate(token_raw) if token_raw else None
    if token_mint:
        parsed["tokenMint"] = token_mint
    amount_raw = _search(_AMOUNT_RAW, text) or _search(_AMOUNT_RAW_SUFFIX, text)
    if amount_raw:
        parsed["amountRaw"] = amount_raw
    amount_ui = _search(_AMOUNT_UI, text)
    if amount_ui:
        parsed["amountUi"] = amount_ui
    with_token = parse_ui_amount_with_token(text)
    if with_token.get("inputMint"):
        if with_token["inputMint"] == SOL_MINT:
            if "amountSol" in with_token:
                parsed.setdefault("amountSol", with_token["amountSol"])
        else:
            parsed.setdefault("tokenMint", with_token["inputMint"])
            parsed.setdefault("amountUi", with_token["amountUi"])
    amount_sol = _amount_sol(text)
    if amount_sol is not None:
        parsed["amountSol"] = amount_sol
    if parsed.get("tokenMint") == SOL_MINT:
        if "amountSol" not in parsed and parsed.get("amountUi"):
            amount_sol = parse_positive_number(parsed["amountUi"])
            if amount_sol is not None:
                parsed["amountSol"] = amount_sol
        del parsed["tokenMint"]
    if parsed.get("tokenMint") or re.search(r"\bspl\b", text, _F):
        parsed["intentType"] = "solana.transfer.spl"
    return parsed


def _kamino_common(text: str) -> dict[str, Any]:
    parsed: dict[str, Any] = {"protocol": "kamino"}
    for name in ("ownerAddress", "marketAddress", "programId"):
        value = _field(name, text)
        if value:
            parsed[name] = value
    if _flag("useV2Ixs", "false", text):
        parsed["useV2Ixs"] = False
    if _flag("includeAtaIxs", "false", text):
        parsed["includeAtaIxs"] = False
    extra = _field("extraComputeUnits", text, "[0-9]+")
    if extra is not None:
        parsed["extraComputeUnits"] = int(extra)
    if _flag("requestElevationGroup", "true", text):
        parsed["requestElevationGroup"] = True
    slot = _field("currentSlot", text, "[0-9]+")
    if slot is not None:
        parsed["currentSlot"] = slot
    return parsed


def parse_kamino_text(text: str, intent_type: str) -> dict[str, Any]:
    parsed = {**_kamino_common(text), "intentType": intent_type}
    mint_raw = _search(rf"\b(?:reserveMint|tokenMint|mint)\s*[=:]\s*({TOKEN})\b", text)
    reserve_mint = parse_mint_or_symbol_candidate(mint_raw) if mint_raw else None
    if reserve_mint:
        parsed["reserveMint"] = reserve_mint
    amount_raw = _search(_AMOUNT_RAW, text) or _search(_AMOUNT_RAW_SUFFIX, text)
    if amount_raw:
        parsed["amountRaw"] = amount_raw
    amount_ui = _search(_AMOUNT_UI, text)
    if amount_ui:
        parsed["amountUi"] = amount_ui
    amount_sol = _amount_sol(text)
    if amount_sol is not None:
        parsed["amountSol"] = amount_sol
    with_token = parse_ui_amount_with_token(text)
    if with_token.get("inputMint"):
        parsed.setdefault("reserveMint", with_token["inputMint"])
        parsed.setdefault("amountUi", with_token["amountUi"])
        if "amountSol" in with_token:
            parsed.setdefault("amountSol", with_token["amountSol"])
    return parsed


def _kamino_verb_leg(text: str, verb_pattern: str) -> dict[str, str]:
    match = re.search(rf"(?:{verb_pattern})\s*({NUM})\s*({TOKEN})\b", text, _F)
    if not match:
        return {}
    leg = {"amountUi": match.group(1)}
    reserve_mint = parse_mint_or_symbol_candidate(match.group(2))
    if reserve_mint:
        leg["reserveMint"] = reserve_mint
    return leg


def _kamino_leg(text: str, prefix: str, verb_pattern: str) -> dict[str, Any]:
    parsed: dict[str, Any] = {}
    mint_raw = _search(rf"\b(?:{prefix}ReserveMint|{prefix}Mint)\s*[=:]\s*({TOKEN})\b", text)
    mint = parse_mint_or_symbol_candidate(mint_raw) if mint_raw else None
    if mint:
        parsed[f"{prefix}ReserveMint"] = mint
    amount_raw = _field(f"{prefix}AmountRaw", text, "[0-9]+")
    if amount_raw:
        parsed[f"{prefix}AmountRaw"] = amount_raw
    amount_ui = _search(rf"\b(?:{prefix}AmountUi|{prefix}Amount)\s*[=:]\s*({NUM})\b", text)
    if amount_ui:
        parsed[f"{prefix}AmountUi"] = amount_ui
    leg = _kamino_verb_leg(text, verb_pattern)
    if leg.get("reserveMint"):
        parsed.setdefault(f"{prefix}ReserveMint", leg["reserveMint"])
    if leg.get("amountUi"):
        parsed.setdefault(f"{prefix}AmountUi", leg["amountUi"])
    return parsed


def parse_kamino_combo_text(text: str, intent_type: str) -> dict[str, Any]:
    parsed = {**_kamino_common(text), "intentType": intent_type}
    if intent_type == "solana.lend.kamino.depositAndBorrow":
        parsed.update(_kamino_leg(text, "deposit", _DEPOSIT))
        parsed.update(_kamino_leg(text, "borrow", _BORROW))
    else:
        parsed.update(_kamino_leg(text, "repay", _REPAY))
        parsed.update(_kamino_leg(text, "withdraw", _WITHDRAW))
    return parsed


def _side_amount(text: str, side_pattern: str) -> tuple[str | None, str | None, str | None]:
    """Parse ``<side> <number> [token]`` into (raw, ui, mint)."""
    match = re.search(rf"\b{side_pattern}\s*[=:]?\s*({NUM})(?:\s+({TOKEN})\b)?", text, _F)
    if not match:
        return None, None, None
    amount, token = match.group(1), match.group(2)
    mint = parse_mint_or_known_symbol_candidate(token) if token else None
    if mint:
        return None, amount, mint
    if "." in amount:
        return None, amount, None
    return amount, None, None


def _generic_lp_amount(text: str, parsed: dict[str, Any]) -> None:
    match = re.search(rf"\bamount(?:Ui)?\s*[=:]?\s*({NUM})\s*({TOKEN})\b", text, _F)
    if match:
        mint = parse_mint_or_symbol_candidate(match.group(2))
        if mint and match.group(2).lower() != "raw":
            parsed["amountUi"] = match.group(1)
            parsed["tokenMint"] = mint
    amount_raw = _search(_AMOUNT_RAW, text)
    if amount_raw:
        parsed["amountRaw"] = amount_raw
    token_raw = _field("tokenMint", text, TOKEN)
    token_mint = parse_mint_or_symbol_candidate(token_raw) if token_raw else None
    if token_mint:
        parsed["tokenMint"] = token_mint


def detect_orca_lp_type(text: str) -> str | None:
    lower = text.lower()
    for name in ("open", "close", "harvest", "increase", "decrease"):
        if f"solana.lp.orca.{name}" in lower:
            return f"solana.lp.orca.{name}"
    if ORCA_OPEN_KEYWORDS.search(text):
        return "solana.lp.orca.open"
    if ORCA_CLOSE_KEYWORDS.search(text):
        return "solana.lp.orca.close"
    if ORCA_HARVEST_KEYWORDS.search(text):
        return "solana.lp.orca.harvest"
    if ORCA_DECREASE_KEYWORDS.search(text):
        return "solana.lp.orca.decrease"
    if ORCA_INCREASE_KEYWORDS.search(text):
        return "solana.lp.orca.increase"
    return None


def parse_orca_lp_text(text: str) -> dict[str, Any]:
    parsed: dict[str, Any] = {}
    intent_type = detect_orca_lp_type(text)
    if intent_type:
        parsed["intentType"] = intent_type
    owner = _field("ownerAddress", text)
    if owner and parse_address(owner):
        parsed["ownerAddress"] = parse_address(owner)
    pool = _field("poolAddress", text) or _search(rf"\bpool\s+({ADDR})\b", text)
    if pool:
        parsed["poolAddress"] = pool
    position = _field("positionMint", text) or _search(rf"\bposition\s+({ADDR})\b", text)
    if position and parse_address(position):
        parsed["positionMint"] = parse_address(position)
    for name in ("liquidityAmountRaw", "tokenAAmountRaw", "tokenBAmountRaw"):
        value = _field(name, text, "[0-9]+")
        if value:
            parsed[name] = value
    for name in ("tokenAAmountUi", "tokenBAmountUi"):
        value = _field(name, text, NUM)
        if value:
            parsed[name] = value
    for name in ("tokenAMint", "tokenBMint"):
        value = _field(name, text, TOKEN)
        mint = parse_mint_or_symbol_candidate(value) if value else None
        if mint:
            parsed[name] = mint
    for side in ("A", "B"):
        if f"token{side}AmountRaw" in parsed or f"token{side}AmountUi" in parsed:
            continue
        raw, ui, mint = _side_amount(text, f"token{side}")
        if raw:
            parsed[f"token{side}AmountRaw"] = raw
        if ui:
            parsed[f"token{side}AmountUi"] = ui
        if mint:
            parsed.setdefault(f"token{side}Mint", mint)
    _generic_lp_amount(text, parsed)
    slippage = _slippage_bps(text)
    if slippage is not None:
        parsed["slippageBps"] = slippage
    if re.search(r"\bfull[\s-]?range\b|全区间", text, _F):
        parsed["fullRange"] = True
    price_range = re.search(rf"\b(?:price\s+)?range\s*({NUM})\s*(?:to|-|~)\s*({NUM})", text, _F)
    if price_range:
        parsed["lowerPrice"] = float(price_range.group(1))
        parsed["upperPrice"] = float(price_range.group(2))
    for name in ("lowerPrice", "upperPrice"):
        value = _field(name, text, NUM)
        if value:
            parsed[name] = float(value)
    bps = _field("liquidityBps", text, "[0-9]+")
    if bps:
        parsed["liquidityBps"] = int(bps)
    elif intent_type == "solana.lp.orca.decrease":
        if re.search(r"\bhalf\b|一半", text, _F):
            parsed["liquidityBps"] = 5000
        else:
            pct = _percent_bps(text)
            if pct is not None:
                parsed["liquidityBps"] = pct
    if "positionMint" not in parsed and intent_type not in (None, "solana.lp.orca.open"):
        exclude = {parsed.get("ownerAddress"), parsed.get("poolAddress")}
        candidates = [a for a in find_addresses(text) if a not in exclude and parse_address(a)]
        if candidates:
            parsed["positionMint"] = candidates[0]
    if "poolAddress" not in parsed and intent_type == "solana.lp.orca.open":
        candidates = [a for a in find_addresses(text) if a != parsed.get("ownerAddress")]
        if candidates:
            parsed["poolAddress"] = candidates[0]
    return parsed


def detect_meteora_lp_type(text: str) -> str | None:
    lower = text.lower()
    if "solana.lp.meteora.add" in lower:
        return "solana.lp.meteora.add"
    if "solana.lp.meteora.remove" in lower:
        return "solana.lp.meteora.remove"
    if METEORA_REMOVE_KEYWORDS.search(text):
        return "solana.lp.meteora.remove"
    if METEORA_ADD_KEYWORDS.search(text):
        return "solana.lp.meteora.add"
    return None


_STRATEGIES = {"spot": "Spot", "curve": "Curve", "bidask": "BidAsk"}


def parse_meteora_lp_text(text: str) -> dict[str, Any]:
    intent_type = detect_meteora_lp_type(text)
    if not intent_type:
        return {}
    parsed: dict[str, Any] = {"intentType": intent_type}
    owner = _field("ownerAddress", text)
    if owner:
        parsed["ownerAddress"] = owner
    pool = _field("poolAddress", text) or _search(rf"\bpool\s+({ADDR})\b", text)
    if pool:
        parsed["poolAddress"] = pool
    position = _field("positionAddress", text) or _search(rf"\bposition\s+({ADDR})\b", text)
    if position:
        parsed["positionAddress"] = position
    positional = [a for a in find_addresses(text) if a not in (owner, pool, position)]
    if "poolAddress" not in parsed and positional:
        parsed["poolAddress"] = positional.pop(0)
    if "positionAddress" not in parsed and positional:
        parsed["positionAddress"] = positional.pop(0)
    bins = re.search(r"\bbins?\s*(-?[0-9]+)\s*(?:to|~|through|\.\.)\s*(-?[0-9]+)", text, _F)
    slippage = _slippage_bps(text)
    if slippage is not None:
        parsed["slippageBps"] = slippage
    if intent_type == "solana.lp.meteora.add":
        for name in ("totalXAmountRaw", "totalYAmountRaw"):
            value = _field(name, text, "[0-9]+")
            if value:
                parsed[name] = value
        for name in ("totalXAmountUi", "totalYAmountUi"):
            value = _field(name, text, NUM)
            if value:
                parsed[name] = value
        for side in ("X", "Y"):
            if f"total{side}AmountRaw" in parsed or f"total{side}AmountUi" in parsed:
                continue
            raw, ui, mint = _side_amount(text, f"(?:total{side}|{side.lower()})")
            if raw:
                parsed[f"total{side}AmountRaw"] = raw
            if ui:
                parsed[f"total{side}AmountUi"] = ui
            if mint:
                parsed[f"token{side}Mint"] = mint
        strategy = _search(r"\bstrategy(?:Type)?\s*[=:]?\s*(spot|curve|bid[\s-]?ask)\b", text)
        if strategy:
            parsed["strategyType"] = _STRATEGIES[re.sub(r"[\s-]", "", strategy.lower())]
        if bins:
            parsed["minBinId"], parsed["maxBinId"] = int(bins.group(1)), int(bins.group(2))
        for name in ("minBinId", "maxBinId"):
            value = _field(name, text, "-?[0-9]+")
            if value:
                parsed[name] = int(value)
        if re.search(r"\bsingle[\s-]?sided(?:\s*x)?\b|\bsingleSidedX\s*[=:]\s*true\b", text, _F):
            parsed["singleSidedX"] = True
        _generic_lp_amount(text, parsed)
        return parsed
    if bins:
        parsed["fromBinId"], parsed["toBinId"] = int(bins.group(1)), int(bins.group(2))
    for name in ("fromBinId", "toBinId"):
        value = _field(name, text, "-?[0-9]+")
        if value:
            parsed[name] = int(value)
    bps = _field("bps", text, "[0-9]+")
    if bps:
        parsed["bps"] = int(bps)
    elif re.search(r"\bhalf\b|一半", text, _F):
        parsed["bps"] = 5000
    elif re.search(r"\ball\b|全部", text, _F):
        parsed["bps"] = 10_000
    else:
        pct = _percent_bps(text)
        if pct is not None:
            parsed["bps"] = pct
    if re.search(r"\bclaim\s+and\s+close\b|\bshouldClaimAndClose\s*[=:]\s*true\b", text, _F):
        parsed["shouldClaimAndClose"] = True
    if re.search(r"\bskip\s+unwrap(?:\s+sol)?\b|\bskipUnwrapSol\s*[=:]\s*true\b", text, _F):
        parsed["skipUnwrapSol"] = True
    return parsed


def detect_stake_type(text: str) -> str | None:
    lower = text.lower()
    for name in ("createAndDelegate", "authorizeStaker", "authorizeWithdrawer", "delegate", "deactivate", "withdraw"):
        if f"solana.stake.{name.lower()}" in lower:
            return f"solana.stake.{name}"
    has_stake = re.search(r"\bstake\b|质押", text, _F) is not None
    if re.search(r"\bwithdraw\b|\bwithdrawal\b|提取|提现", text, _F) and has_stake:
        return "solana.stake.withdraw"
    if re.search(r"\b(authorize|set|change|rotate)\b.*\bwithdraw(er| authority)?\b", text, _F) or re.search(
        r"(更新|修改|变更|更换).*?(withdraw|withdrawer|提取权限|提币权限)", text, _F
    ):
        return "solana.stake.authorizeWithdrawer"
    if re.search(r"\b(authorize|set|change|rotate)\b.*\b(staker|stake authority)\b", text, _F) or re.search(
        r"(更新|修改|变更|更换).*?(staker|质押权限|stake authority)", text, _F
    ):
        return "solana.stake.authorizeStaker"
    has_amount = re.search(rf"\bamountSol\s*[=:]\s*{NUM}\b", text, _F) or re.search(rf"{NUM}\s*sol\b", text, _F)
    has_target = re.search(r"\bvoteAccount(?:Address)?\b|\bvalidator\b|验证者|\bto\b|到|给", text, _F)
    if re.search(r"\b(create|new)\b.*\bstake\b|创建.*质押|新建.*质押", text, _F) or (has_stake and has_amount and has_target):
        return "solana.stake.createAndDelegate"
    if re.search(r"\b(delegate|delegation)\b|委托质押|质押到|委托到", text, _F):
        return "solana.stake.delegate"
    if re.search(r"\bdeactivate\b|\bunstake\b|解除质押|取消质押|停止质押", text, _F):
        return "solana.stake.deactivate"
    return None


def parse_stake_text(text: str) -> dict[str, Any]:
    intent_type = detect_stake_type(text)
    if not intent_type:
        return {}
    parsed: dict[str, Any] = {"intentType": intent_type}
    stake_authority = _search(rf"\bstakeAuthority(?:Address)?\s*[=:]\s*({ADDR})\b", text)
    if stake_authority:
        parsed["stakeAuthorityAddress"] = stake_authority
    withdraw_authority = _search(rf"\bwithdrawAuthority(?:Address)?\s*[=:]\s*({ADDR})\b", text)
    if withdraw_authority:
        parsed["withdrawAuthorityAddress"] = withdraw_authority
    new_authority = _search(
        rf"\b(?:newAuthority|newAuthorityAddress|newStaker|newStakerAddress|newWithdraw(?:er|Authority)?(?:Address)?)\s*[=:]\s*({ADDR})\b",
        text,
    )
    if new_authority:
        parsed["newAuthorityAddress"] = new_authority
    authorization_type = _search(r"\bauthorizationType\s*[=:]\s*(staker|withdrawer)\b", text)
    if authorization_type:
        parsed["authorizationType"] = authorization_type.lower()
    stake_account = _search(rf"\bstakeAccount(?:Address)?\s*[=:]\s*({ADDR})\b", text)
    if stake_account:
        parsed["stakeAccountAddress"] = stake_account
    vote_account = _search(rf"\bvoteAccount(?:Address)?\s*[=:]\s*({ADDR})\b", text)
    if vote_account:
        parsed["voteAccountAddress"] = vote_account
    seed = _field("stakeSeed", text, "[A-Za-z0-9_-]{1,64}")
    if seed:
        parsed["stakeSeed"] = seed
    to_address = _search(_TO_ADDRESS, text)
    if to_address:
        parsed["toAddress"] = to_address
    amount_sol = _amount_sol(text)
    if amount_sol is not None:
        parsed["amountSol"] = amount_sol

    addresses = find_addresses(text)
    if intent_type != "solana.stake.createAndDelegate" and "stakeAccountAddress" not in parsed and addresses:
        parsed["stakeAccountAddress"] = addresses[0]
    if intent_type == "solana.stake.createAndDelegate" and "voteAccountAddress" not in parsed:
        if to_address:
            parsed["voteAccountAddress"] = to_address
        elif addresses:
            parsed["voteAccountAddress"] = addresses[-1]
    others = [a for a in addresses if a != parsed.get("stakeAccountAddress")]
    if intent_type in ("solana.stake.authorizeStaker", "solana.stake.authorizeWithdrawer"):
        if "newAuthorityAddress" not in parsed and others:
            parsed["newAuthorityAddress"] = others[-1]
    if intent_type == "solana.stake.delegate" and "voteAccountAddress" not in parsed and others:
        parsed["voteAccountAddress"] = others[0]
    if intent_type == "solana.stake.withdraw" and "toAddress" not in parsed and others:
        parsed["toAddress"] = others[-1]
    return parsed


def detect_read_type(text: str) -> str | None:
    """Read type implied by keywords alone, or None."""
    if LENDING_MARKETS_KEYWORDS.search(text):
        return "solana.read.lendingMarkets"
    if LENDING_POSITIONS_KEYWORDS.search(text):
        return "solana.read.lendingPositions"
    if METEORA_POSITIONS_KEYWORDS.search(text):
        return "solana.read.meteoraPositions"
    if ORCA_POSITIONS_KEYWORDS.search(text):
        return "solana.read.orcaPositions"
    if DEFI_POSITIONS_KEYWORDS.search(text):
        return "solana.read.defiPositions"
    if PORTFOLIO_KEYWORDS.search(text):
        return "solana.read.portfolio"
    return None


def parse_read_text(text: str) -> dict[str, Any]:
    parsed: dict[str, Any] = {}
    address = _field("address", text)
    if not address:
        addresses = find_addresses(text)
        address = addresses[-1] if addresses else None
    if address:
        parsed["address"] = address
    token_raw = _field("tokenMint", text, TOKEN)
    token_mint = parse_mint_or_symbol_candidate(token_raw) if token_raw else None
    if token_mint:
        parsed["tokenMint"] = token_mint
    else:
        for pattern in (
            rf"({TOKEN})\s*(?:token\s*)?(?:balance|余额)",
            rf"(?:balance|余额)\s*(?:of|for|查询)?\s*({TOKEN})",
        ):
            candidate = _search(pattern, text)
            mint = parse_mint_or_known_symbol_candidate(candidate) if candidate else None
            if mint and mint != SOL_MINT:
                parsed["tokenMint"] = mint
                break
    protocol = _field("protocol", text, r"[A-Za-z][A-Za-z0-9._-]{1,15}")
    if protocol:
        parsed["protocol"] = protocol.lower()
    program_id = _field("programId", text)
    if program_id:
        parsed["programId"] = program_id
    limit = _field("limitMarkets", text, "[0-9]{1,3}")
    if limit and int(limit) > 0:
        parsed["limitMarkets"] = int(limit)

    intent_type = detect_read_type(text)
    if intent_type in ("solana.read.lendingMarkets", "solana.read.lendingPositions"):
        parsed.setdefault("protocol", "kamino")
    if intent_type is None:
        intent_type = "solana.read.tokenBalance" if "tokenMint" in parsed else "solana.read.balance"
    parsed["intentType"] = intent_type
    return parsed


def detect_swap_type(text: str) -> str:
    lower = text.lower()
    for name in ("raydium", "orca", "meteora", "jupiter"):
        if f"solana.swap.{name}" in lower:
            return f"solana.swap.{name}"
    for pattern in (
        r"\b(?:only|just)\s*(?:on|via)?\s*(orca|meteora|dlmm|raydium|jupiter)\b",
        r"\b(?:on|via)\s*(orca|meteora|dlmm|raydium|jupiter)\b",
        r"(?:只走|仅走|只用|仅用|在|通过|走)\s*(orca|meteora|dlmm|raydium|jupiter)",
    ):
        keyword = _search(pattern, text)
        if keyword:
            intent_type = swap_type_for_protocol_keyword(keyword)
            if intent_type:
                return intent_type
    return "solana.swap.jupiter"


def parse_swap_text(text: str) -> dict[str, Any]:
    intent_type = detect_swap_type(text)
    parsed: dict[str, Any] = {"intentType": intent_type}
    input_raw = _field("inputMint", text, TOKEN)
    output_raw = _field("outputMint", text, TOKEN)
    input_mint = parse_mint_or_symbol_candidate(input_raw) if input_raw else None
    output_mint = parse_mint_or_symbol_candidate(output_raw) if output_raw else None
    if input_mint:
        parsed["inputMint"] = input_mint
    if output_mint:
        parsed["outputMint"] = output_mint
    if "inputMint" not in parsed or "outputMint" not in parsed:
        pairs = list(re.finditer(rf"({TOKEN})\s*(?:->|to|for|换成|换到|兑成|兑为)\s*({TOKEN})", text, _F))
        if pairs:
            last = pairs[-1]
            pair_in = parse_mint_or_symbol_candidate(last.group(1))
            pair_out = parse_mint_or_symbol_candidate(last.group(2))
            if pair_in:
                parsed.setdefault("inputMint", pair_in)
            if pair_out:
                parsed.setdefault("outputMint", pair_out)
    with_token = parse_ui_amount_with_token(text)
    if with_token.get("inputMint"):
        if parsed.get("inputMint") in (None, with_token["inputMint"]):
            parsed.setdefault("inputMint", with_token["inputMint"])
            parsed["amountUi"] = with_token["amountUi"]
            if "amountSol" in with_token:
                parsed.setdefault("amountSol", with_token["amountSol"])
    amount_raw = _search(_AMOUNT_RAW, text) or _search(r"\b([0-9]+)\s*(?:raw|lamports?)\b", text)
    if amount_raw:
        parsed["amountRaw"] = amount_raw
    amount_ui = _search(rf"\b(?:amount|amountIn|amountUi)\s*[=:]\s*({NUM})\b", text)
    if amount_ui:
        parsed["amountUi"] = amount_ui
    amount_sol = _amount_sol(text)
    if amount_sol is not None:
        parsed["amountSol"] = amount_sol
    slippage = _search(_SLIPPAGE_BPS, text) or _search(r"\b([0-9]+)\s*bps\b", text)
    if slippage and int(slippage) > 0:
        parsed["slippageBps"] = int(slippage)
    if "slippageBps" not in parsed:
        pct = _search(_SLIPPAGE_PCT, text)
        value = parse_positive_number(pct) if pct else None
        if value is not None:
            parsed["slippageBps"] = round(value * 100)
    if re.search(r"\bexact\s*out\b|\bexactout\b", text, _F):
        parsed["swapMode"] = "ExactOut"
    elif re.search(r"\bexact\s*in\b|\bexactin\b", text, _F):
        parsed["swapMode"] = "ExactIn"
    dexes = _search(r"\bdexes?\s*[=:]\s*([A-Za-z0-9._\- /,|]+)", text)
    if dexes:
        parsed["dexes"] = split_dex_labels(dexes)
    exclude = _search(r"\bexcludeDexes?\s*[=:]\s*([A-Za-z0-9._\- /,|]+)", text)
    if exclude:
        parsed["excludeDexes"] = split_dex_labels(exclude)
    excluded: list[str] = []
    for match in re.finditer(r"(?:exclude|without|排除|不要|不走)\s*(orca|meteora|dlmm|raydium)\b", text, _F):
        excluded.extend(dexes_for_protocol_keyword(match.group(1)) or [])
    if excluded:
        parsed["excludeDexes"] = unique_strings(parsed.get("excludeDexes", []) + excluded)
    if "dexes" not in parsed:
        defaults = default_dexes_for_type(intent_type)
        if defaults:
            parsed["dexes"] = defaults
    return parsed


def _with_type(parser: Callable[[str], dict[str, Any]], intent_type: str) -> Callable[[str], dict[str, Any]]:
    return lambda text: {**parser(text), "intentType": intent_type}


def _kamino(intent_type: str) -> Callable[[str], dict[str, Any]]:
    if intent_type.endswith(("depositAndBorrow", "repayAndWithdraw")):
        return lambda text: parse_kamino_combo_text(text, intent_type)
    return lambda text: parse_kamino_text(text, intent_type)


READ_TYPES = (
    "solana.read.balance",
    "solana.read.orcaPositions",
    "solana.read.meteoraPositions",
    "solana.read.tokenBalance",
    "solana.read.portfolio",
    "solana.read.defiPositions",
    "solana.read.lendingMarkets",
    "solana.read.lendingPositions",
)

# Longer names first so "kamino.depositAndBorrow" wins over "kamino.deposit".
CANONICAL_PARSERS: tuple[tuple[str, Callable[[str], dict[str, Any]]], ...] = (
    *((t, _with_type(parse_read_text, t)) for t in READ_TYPES),
    ("solana.transfer.sol", parse_transfer_text),
    ("solana.transfer.spl", _with_type(parse_transfer_text, "solana.transfer.spl")),
    *(
        (t, _kamino(t))
        for t in (
            "solana.lend.kamino.depositAndBorrow",
            "solana.lend.kamino.repayAndWithdraw",
            "solana.lend.kamino.borrow",
            "solana.lend.kamino.deposit",
            "solana.lend.kamino.repay",
            "solana.lend.kamino.withdraw",
        )
    ),
    *(
        (t, _with_type(parse_orca_lp_text, t))
        for t in (
            "solana.lp.orca.open",
            "solana.lp.orca.close",
            "solana.lp.orca.harvest",
            "solana.lp.orca.increase",
            "solana.lp.orca.decrease",
        )
    ),
    ("solana.lp.meteora.add", parse_meteora_lp_text),
    ("solana.lp.meteora.remove", parse_meteora_lp_text),
    *(
        (t, _with_type(parse_stake_text, t))
        for t in (
            "solana.stake.createAndDelegate",
            "solana.stake.authorizeStaker",
            "solana.stake.authorizeWithdrawer",
            "solana.stake.delegate",
            "solana.stake.deactivate",
            "solana.stake.withdraw",
        )
    ),
    ("solana.swap.jupiter", parse_swap_text),
    *((t, _with_type(parse_swap_text, t)) for t in ("solana.swap.orca", "solana.swap.meteora", "solana.swap.raydium")),
)

KAMINO_KEYWORD_RULES = (
    (KAMINO_REPAY_AND_WITHDRAW_KEYWORDS, "solana.lend.kamino.repayAndWithdraw"),
    (KAMINO_DEPOSIT_AND_BORROW_KEYWORDS, "solana.lend.kamino.depositAndBorrow"),
    (KAMINO_REPAY_KEYWORDS, "solana.lend.kamino.repay"),
    (KAMINO_WITHDRAW_KEYWORDS, "solana.lend.kamino.withdraw"),
    (KAMINO_BORROW_KEYWORDS, "solana.lend.kamino.borrow"),
    (KAMINO_DEPOSIT_KEYWORDS, "solana.lend.kamino.deposit"),
)

ORCA_LP_FIELDS = ("positionMint", "liquidityAmountRaw", "tokenAAmountRaw", "tokenBAmountRaw")
SWAP_TRIAL_FIELDS = ("inputMint", "outputMint", "amountRaw", "amountUi", "swapMode")
STAKE_TRIAL_FIELDS = ("stakeAccountAddress", "voteAccountAddress", "newAuthorityAddress")


def keyword_categories(text: str) -> list[str]:
    """Keyword categories present in ``text``, for diagnosing ambiguous input."""
    found = []
    for name, pattern in (
        ("swap", SWAP_KEYWORDS),
        ("transfer", TRANSFER_KEYWORDS),
        ("stake", STAKE_OPERATION_KEYWORDS),
        ("read", READ_KEYWORDS),
    ):
        if pattern.search(text):
            found.append(name)
    if any(pattern.search(text) for pattern, _ in KAMINO_KEYWORD_RULES):
        found.append("lending")
    if detect_orca_lp_type(text) or detect_meteora_lp_type(text):
        found.append("liquidity")
    return found


def parse_intent_text(intent_text: Any) -> dict[str, Any]:
    if not isinstance(intent_text, str) or not intent_text.strip():
        return {}
    text = intent_text.strip()
    lower = text.lower()
    for canonical, parser in CANONICAL_PARSERS:
        if canonical.lower() in lower:
            return parser(text)

    has_swap = SWAP_KEYWORDS.search(text) is not None
    has_transfer = TRANSFER_KEYWORDS.search(text) is not None
    has_stake = STAKE_OPERATION_KEYWORDS.search(text) is not None
    has_read = READ_KEYWORDS.search(text) is not None
    if has_swap and not has_transfer:
        return parse_swap_text(text)
    for pattern, intent_type in KAMINO_KEYWORD_RULES:
        if pattern.search(text):
            return _kamino(intent_type)(text)
    if detect_meteora_lp_type(text):
        return parse_meteora_lp_text(text)
    if detect_orca_lp_type(text):
        return parse_orca_lp_text(text)
    if has_stake and not has_swap and not has_transfer:
        return parse_stake_text(text)
    if has_transfer and not has_swap:
        return parse_transfer_text(text)
    if has_read and not has_swap and not has_transfer:
        return parse_read_text(text)

    stake_fields = parse_stake_text(text)
    if stake_fields.get("intentType"):
        return stake_fields
    orca_fields = parse_orca_lp_text(text)
    if orca_fields.get("intentType") or any(orca_fields.get(k) for k in ORCA_LP_FIELDS):
        return orca_fields
    swap_fields = parse_swap_text(text)
    if any(swap_fields.get(k) for k in SWAP_TRIAL_FIELDS):
        return swap_fields
    if any(stake_fields.get(k) for k in STAKE_TRIAL_FIELDS):
        return stake_fields
    transfer_fields = parse_transfer_text(text)
    if transfer_fields.get("toAddress") or transfer_fields.get("amountSol"):
        return transfer_fields
    read_fields = parse_read_text(text)
    if read_fields.get("address") or read_fields.get("tokenMint") or detect_read_type(text):
        return read_fields
    return {}


def merge_intent_params(params: dict[str, Any]) -> dict[str, Any]:
    """Text-parsed fields first, then every explicit non-None parameter on top."""
    parsed = parse_intent_text(params.get("intentText"))
    if not parsed:
        return dict(params)
    merged = dict(parsed)
    for key, value in params.items():
        if value is not None:
            merged[key] = value
    return merged


def parse_run_mode_hint(text: Any) -> str | None:
    if not isinstance(text, str) or not text.strip():
        return None
    has_execute = HAS_EXECUTE_HINT.search(text) is not None
    has_simulate = HAS_SIMULATE_HINT.search(text) is not None
    has_analysis = HAS_ANALYSIS_HINT.search(text) is not None
    if has_simulate and not has_execute:
        return "simulate"
    if has_analysis and not has_execute and not has_simulate:
        return "analysis"
    if has_execute and not has_simulate and not has_analysis:
        return "execute"
    if has_simulate and has_execute:
        return "simulate" if SIMULATE_FIRST_HINT.search(text) else "execute"
    if has_analysis and has_execute:
        return "analysis" if ANALYSIS_FIRST_HINT.search(text) else "execute"
    return None


def resolve_run_mode(run_mode: Any, intent_text: Any) -> str:
    selected = run_mode if run_mode is not None else parse_run_mode_hint(intent_text)
    return selected if selected in RUN_MODES else "analysis"
