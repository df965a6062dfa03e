from spending_analyst.ai_chatbot.schemas import (
    BulkDownloadTicket,
    DateRange,
    EntityCandidate,
    PrepareResult,
    ResolvedEntitySet,
)


def test_resolved_entities_accept_bare_codes():
    entities = ResolvedEntitySet.model_validate({"agencyIds": [529, "601"]})

    assert [c.code for c in entities.agency_ids] == [529, "601"]


def test_add_skips_duplicate_codes():
    entities = ResolvedEntitySet()
    entities.add("payee_ids", EntityCandidate(name="Acme", code=7))
    entities.add("payee_ids", EntityCandidate(name="Acme Corp", code=7))

    assert len(entities.payee_ids) == 1
    assert not entities.is_empty()


def test_describe_lists_entities_and_dates():
    entities = ResolvedEntitySet(
        agency_ids=[{"name": "TxDOT", "code": 601}],
        date_range=DateRange(start="2022-03-01", end="2022-03-31", granularity="monthly"),
    )

    assert entities.describe() == "Agencies: TxDOT (601); Date Range: 2022-03-01 to 2022-03-31 (monthly)"


def test_prepare_result_payload_is_flat_and_camel_case():
    result = PrepareResult(
        success=True,
        prepared=True,
        ticket=BulkDownloadTicket(sql_query="SELECT 1", filename="f", csv_columns=["a"]),
        estimated_size="~1 KB",
    )

    assert result.to_payload() == {
        "success": True,
        "prepared": True,
        "sqlQuery": "SELECT 1",
        "filename": "f",
        "estimatedRows": 0,
        "csvColumns": ["a"],
        "explanation": "",
        "entityContext": "",
        "estimatedSize": "~1 KB",
    }
