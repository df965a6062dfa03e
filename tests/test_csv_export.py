from datetime import date

from spending_analyst.ai_chatbot.csv_export import (
    convert_to_csv,
    ensure_csv_extension,
    format_estimated_size,
    format_export_row,
    generate_filename,
)


def test_convert_to_csv_quotes_text_and_leaves_numbers_bare():
    content = convert_to_csv(
        [
            {"payee_name": 'O"Brien', "amount_dollars": 12.5, "note": None},
            {"payee_name": "Acme, Inc.", "amount_dollars": 3, "note": "paid"},
        ]
    )

    assert content == (
        '"payee_name","amount_dollars","note"\n'
        '"O""Brien",12.5,""\n'
        '"Acme, Inc.",3,"paid"'
    )


def test_convert_to_csv_empty_rows():
    assert convert_to_csv([]) == ""


def test_format_export_row_formats_dates_only():
    row = format_export_row({"payment_date": "2022-08-12T00:00:00.000Z", "amount_dollars": 10.25})

    assert row == {"payment_date": "2022-08-12", "amount_dollars": 10.25}


def test_generate_filename_slugs_question_and_context():
    name = generate_filename(
        "Export all TxDOT payments!", "Agencies: Texas Department", today=date(2024, 1, 31)
    )

    assert name == "texas_doge_export_all_txdot_payments_agencies_texas_depar_2024-01-31"


def test_ensure_csv_extension():
    assert ensure_csv_extension("report") == "report.csv"
    assert ensure_csv_extension("report.CSV") == "report.CSV"
    assert ensure_csv_extension('bad"name') == "badname.csv"
    assert ensure_csv_extension("") == "texas_doge_export.csv"


def test_format_estimated_size():
    assert format_estimated_size(100, 5) == "~10 KB"
    assert format_estimated_size(100_000, 10) == "~19.1 MB"
