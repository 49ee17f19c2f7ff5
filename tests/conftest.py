"""Pytest fixtures: sample analyzer payloads, a fake transport, and a Flask app."""

from __future__ import annotations

from typing import Any

import pytest

from app import create_app
from helpers import FakeAnalyzerClient


# =============================================================================
# Payloads
# =============================================================================


@pytest.fixture
def nested_payload() -> dict[str, Any]:
    return {
        "status": "success",
        "result": {
            "filename": "acme.pdf",
            "methodology": "activity",
            "extracted_text_length": 1834,
            "formatted_result": {
                "supplier": "Acme",
                "total_cost": 120.5,
                "invoice_name": "INV-001",
                "items": [
                    {"name": "Steel beam", "quantity": 2, "unit_price": 10, "total_price": 20,
                     "weight": "40 kg", "material": "steel", "method": "llm", "confidence": 0.9},
                    {"name": "Bolts, M8", "quantity": "100", "unit_price": "0.5", "total_price": 50},
                ],
            },
            "emission_calculations": {
                "currency": "USD",
                "notes": "Factors from reference dataset",
                "items": [
                    {
                        "name": "Steel beam",
                        "methodology_applied": "activity",
                        "emissions_kgco2e": 5.25,
                        "emission_factor": {"value": 0.13125, "unit": "kgCO2e/kg", "basis": "weight"},
                        "calculation": "40 kg x 0.13125",
                        "confidence": 0.8,
                        "source": "DEFRA",
                        "inputs": {"quantity": 2, "weight": "40 kg", "material": "steel"},
                    },
                    {"name": "Bolts, M8", "methodology_applied": "spend", "emissions_kgco2e": 1.5},
                ],
                "totals": {"sum_emissions_kgco2e": 6.75},
            },
        },
    }


@pytest.fixture
def flat_records() -> list[dict[str, Any]]:
    return [
        {
            "name": "Diesel",
            "usages": 120,
            "usageUnit": "l",
            "consumption": "1,200.5",
            "consumptionUnit": "kWh",
            "tagName": "FuelCo",
            "tco2": "1.234",
            "weightConfidence": 85,
            "factor": [{"name": "Diesel combustion", "co2": 2.68, "co2_unit": "kg/l", "factorConfidence": 90}],
        },
        {"description": "Office paper", "usages": 5, "tco2": "N/A"},
    ]


@pytest.fixture
def fake_client() -> FakeAnalyzerClient:
    return FakeAnalyzerClient()


@pytest.fixture
def app(tmp_path, fake_client):
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "RESULTS_FOLDER": str(tmp_path / "results"),
        },
        client=fake_client,
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()
