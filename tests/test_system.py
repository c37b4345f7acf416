def test_root_and_health(client):
    assert client.get("/").status_code == 200
    assert client.get("/health").json() == {"status": "healthy"}


def test_database_report_lists_collections(client, student):
    report = client.get("/test").json()
    assert report["connection_status"] == "Connected"
    assert "users" in report["collections"]
