import threading
from concurrent.futures import ThreadPoolExecutor

from db import Database
from db.models import SqlCatalog, init_db


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.get_json()["status"] == "ok"


def test_packs_list_hides_content(client):
    r = client.get("/packs")
    assert r.status_code == 200
    packs = r.get_json()
    assert [p["price"] for p in packs] == [1290, 2290, 4890, 6390]
    assert all("content" not in p for p in packs)


def test_pack_detail(client):
    r = client.get("/packs/1")
    assert r.status_code == 200
    assert r.get_json()["slug"] == "pack-inicial"


def test_pack_detail_unknown(client):
    r = client.get("/packs/999")
    assert r.status_code == 404
    assert r.get_json()["error"] == "not_found"


def test_unknown_route_is_json_404(client):
    r = client.get("/nao-existe")
    assert r.status_code == 404
    assert r.is_json


def test_ensure_schema_requires_token(make_app):
    app = make_app(config={"SETUP_TOKEN": "segredo"})
    client = app.test_client()
    assert client.get("/__admin/ensure_schema").status_code == 403
    assert client.get("/__admin/ensure_schema?token=errado").status_code == 403
    r = client.get("/__admin/ensure_schema?token=segredo")
    assert r.status_code == 200
    assert r.get_json() == {"ok": True}


def test_ensure_schema_disabled_without_token(client):
    assert client.get("/__admin/ensure_schema?token=").status_code == 403


def test_init_db_command(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["init-db"])
    assert result.exit_code == 0
    assert "Schema pronto" in result.output
    # idempotente: não duplica os packs iniciais
    assert len(app.test_client().get("/packs").get_json()) == 4


def test_concurrent_boot_seeds_packs_once(make_app):
    n = 8
    barrier = threading.Barrier(n)

    def boot(_):
        barrier.wait()
        return make_app()

    with ThreadPoolExecutor(max_workers=n) as pool:
        apps = list(pool.map(boot, range(n)))

    packs = apps[0].test_client().get("/packs").get_json()
    assert [p["slug"] for p in packs] == ["pack-inicial", "pack-avancado", "pack-premium", "pack-premium-plus"]


def test_seed_defaults_only_on_empty_catalog(db_url):
    database = Database(db_url)
    init_db(database, seed_packs=False)
    catalog = SqlCatalog(database)

    assert catalog.seed_defaults() == 4
    assert catalog.seed_defaults() == 0
    assert len(catalog.list_packs()) == 4
