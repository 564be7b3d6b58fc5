from decimal import Decimal

from fastapi.testclient import TestClient


def _entry(client: TestClient, headers: dict, path: str, amount, category: str, day: str, description: str = "entry") -> None:
    res = client.post(path, json={"description": description, "amount": amount, "category": category, "date": day}, headers=headers)
    assert res.status_code == 200


def test_report_data_for_explicit_range(client: TestClient, auth_headers: dict) -> None:
    _entry(client, auth_headers, "/api/income", 2000, "Salary", "2024-03-01")
    _entry(client, auth_headers, "/api/expenses", 150, "Food", "2024-03-05")
    _entry(client, auth_headers, "/api/expenses", 350, "Rent", "2024-03-06")

    res = client.get("/api/reports/data", params={"startDate": "2024-03-01", "endDate": "2024-03-31"}, headers=auth_headers)

    assert res.status_code == 200
    body = res.json()
    assert body["period"] == "month"
    assert body["dateRange"] == {"start": "2024-03-01", "end": "2024-03-31"}
    assert body["summary"]["totalIncome"] == "2000.00"
    assert body["summary"]["savingsRate"] == "75.00"
    assert body["categoryBreakdown"]["expenses"] == [
        {"category": "Rent", "amount": "350.00", "percentage": "70.00"},
        {"category": "Food", "amount": "150.00", "percentage": "30.00"},
    ]
    assert len(body["monthlyData"]) == 6
    assert set(body["monthlyData"][0]) == {"label", "income", "expenses", "savings"}


def test_report_data_validates_period_and_range(client: TestClient, auth_headers: dict) -> None:
    assert client.get("/api/reports/data", params={"period": "week"}, headers=auth_headers).status_code == 422
    assert client.get("/api/reports/data", params={"period": "quarter"}, headers=auth_headers).json()["period"] == "quarter"
    inverted = client.get("/api/reports/data", params={"startDate": "2024-03-02", "endDate": "2024-03-01"}, headers=auth_headers)
    assert inverted.status_code == 422
    assert inverted.json()["error"]["details"][0]["field"] == "startDate"


def test_report_data_is_scoped_to_the_caller(client: TestClient, auth_headers: dict, other_headers: dict) -> None:
    _entry(client, auth_headers, "/api/income", 500, "Salary", "2024-03-01")

    res = client.get("/api/reports/data", params={"startDate": "2024-03-01", "endDate": "2024-03-31"}, headers=other_headers)

    assert res.json()["summary"]["totalIncome"] == "0.00"


def test_export_json(client: TestClient, auth_headers: dict) -> None:
    _entry(client, auth_headers, "/api/income", 1000, "Salary", "2024-03-01")
    _entry(client, auth_headers, "/api/expenses", 40, "Food", "2024-03-02")

    res = client.get("/api/reports/export", params={"startDate": "2024-03-01", "endDate": "2024-03-31"}, headers=auth_headers)

    assert res.status_code == 200
    body = res.json()
    assert body["summary"]["recordCounts"] == {"income": 1, "expenses": 1, "total": 2}
    assert body["categoryBreakdown"]["expenses"] == {"Food": "40.00"}
    assert body["transactions"]["income"][0]["date"] == "2024-03-01"
    assert "generatedAt" in body


def test_export_csv(client: TestClient, auth_headers: dict) -> None:
    _entry(client, auth_headers, "/api/expenses", 40, "Food", "2024-03-02", description="Lunch, cafe")

    res = client.get(
        "/api/reports/export",
        params={"startDate": "2024-03-01", "endDate": "2024-03-31", "format": "csv"},
        headers=auth_headers,
    )

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/csv")
    assert "financial-report-2024-03-01-to-2024-03-31.csv" in res.headers["content-disposition"]
    assert res.text.splitlines() == ["Type,Date,Amount,Category,Description", 'Expense,2024-03-02,40.00,Food,"Lunch, cafe"']


def test_export_requires_valid_range(client: TestClient, auth_headers: dict) -> None:
    missing = client.get("/api/reports/export", params={"startDate": "2024-03-01"}, headers=auth_headers)
    assert missing.status_code == 422
    assert missing.json()["error"]["details"][0]["field"] == "endDate"

    too_long = client.get("/api/reports/export", params={"startDate": "2020-01-01", "endDate": "2024-01-01"}, headers=auth_headers)
    assert too_long.status_code == 422

    bad_format = client.get(
        "/api/reports/export",
        params={"startDate": "2024-03-01", "endDate": "2024-03-31", "format": "xml"},
        headers=auth_headers,
    )
    assert bad_format.status_code == 422


def test_budget_templates(client: TestClient, auth_headers: dict) -> None:
    listed = client.get("/api/budgets/templates", headers=auth_headers)
    assert listed.status_code == 200
    templates = listed.json()
    assert [t["id"] for t in templates] == ["default-1", "default-2", "default-3", "default-4"]
    assert templates[0]["name"] == "Basic Monthly Budget"
    assert templates[0]["categories"][0]["name"] == "Housing"
    assert Decimal(templates[0]["categories"][0]["amount"]) == Decimal("1200")

    created = client.post(
        "/api/budgets/templates",
        json={"name": "Mine", "categories": [{"name": "Food", "amount": 250}]},
        headers=auth_headers,
    )
    assert created.status_code == 200
    assert created.json()["name"] == "Mine"
    assert created.json()["id"] not in {t["id"] for t in templates}

    invalid = client.post("/api/budgets/templates", json={"name": "", "categories": []}, headers=auth_headers)
    assert invalid.status_code == 422


def test_report_and_template_routes_require_session(app) -> None:
    anonymous = TestClient(app)
    for path in ("/api/reports/data", "/api/reports/export", "/api/budgets/templates"):
        assert anonymous.get(path).status_code == 401, path
