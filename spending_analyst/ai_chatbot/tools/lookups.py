"""Entity-code lookup tools, one per entity type."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List

from ..entity_resolver import ENTITY_SPECS, EntityType
from .types import LookupInput, ToolSpec, TurnContext

LOOKUP_TOOLS: Dict[str, EntityType] = {
    "getAgencyCode": EntityType.AGENCY,
    "getApplicationFundCode": EntityType.APPLICATION_FUND,
    "getAppropriationCode": EntityType.APPROPRIATION,
    "getCategoryCode": EntityType.CATEGORY,
    "getFundCode": EntityType.FUND,
    "getPayeeCode": EntityType.PAYEE,
    "getComptrollerCode": EntityType.COMPTROLLER,
}


def _lookup_handler(entity_type: EntityType):
    async def handler(ctx: TurnContext, args: LookupInput) -> Dict[str, Any]:
        result = await asyncio.to_thread(
            ctx.services.resolver.lookup, entity_type, args.search_term
        )
        if result.status == "resolved":
            ctx.entities.add(ENTITY_SPECS[entity_type].result_field, result.candidates[0])
        return result.to_payload()

    handler.__name__ = f"lookup_{entity_type.value}"
    return handler


def lookup_tool_specs() -> List[ToolSpec]:
    specs = []
    for name, entity_type in LOOKUP_TOOLS.items():
        spec = ENTITY_SPECS[entity_type]
        specs.append(
            ToolSpec(
                name=name,
                description=(
                    f"Get the {spec.code_phrase} for a {spec.noun} name using fuzzy search."
                    f" Returns one code, a list of possible {spec.plural} to choose from, or no match."
                ),
                input_model=LookupInput,
                handler=_lookup_handler(entity_type),
            )
        )
    return specs
