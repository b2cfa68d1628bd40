"""Tests for BuildPlanner and compute_fingerprint."""

import pytest

from stackup.builder import BuildPlanner
from stackup.errors import BuildError, BuildErrorKind
from stackup.schemas import BuildAction, BuildRecord, BuildSpec, ServiceSpec
from stackup.utils import compute_fingerprint


@pytest.fixture
def planner(build_store, docker):
    return BuildPlanner(build_store, docker, project_name="shop")


@pytest.fixture
def product(manifest):
    return manifest.services["product-service"]


class TestFingerprint:
    """Build context hashing."""

    def test_stable(self, shop_dir):
        context = shop_dir / "products"
        assert compute_fingerprint(context) == compute_fingerprint(context)

    def test_changes_on_edit(self, shop_dir):
        context = shop_dir / "products"
        before = compute_fingerprint(context)
        (context / "app.txt").write_text("changed\n")
        assert compute_fingerprint(context) != before

    def test_changes_on_new_file(self, shop_dir):
        context = shop_dir / "products"
        before = compute_fingerprint(context)
        (context / "extra.py").write_text("")
        assert compute_fingerprint(context) != before

    def test_changes_on_rename(self, shop_dir):
        context = shop_dir / "products"
        before = compute_fingerprint(context)
        (context / "app.txt").rename(context / "main.txt")
        assert compute_fingerprint(context) != before

    def test_ignores_git_directory(self, shop_dir):
        context = shop_dir / "products"
        before = compute_fingerprint(context)
        (context / ".git").mkdir()
        (context / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
        assert compute_fingerprint(context) == before

    def test_identical_contexts_match(self, shop_dir, tmp_path):
        copy = tmp_path / "copy"
        copy.mkdir()
        for f in (shop_dir / "products").iterdir():
            (copy / f.name).write_bytes(f.read_bytes())
        assert compute_fingerprint(copy) == compute_fingerprint(shop_dir / "products")

    def test_recipe_outside_context(self, shop_dir, tmp_path):
        context = shop_dir / "products"
        recipe = tmp_path / "Dockerfile.external"
        recipe.write_text("FROM alpine\n")
        with_recipe = compute_fingerprint(context, recipe)
        assert with_recipe != compute_fingerprint(context)

        recipe.write_text("FROM debian\n")
        assert compute_fingerprint(context, recipe) != with_recipe


class TestPlan:
    """Reuse vs rebuild decisions."""

    def test_no_previous_build(self, planner, product):
        decision = planner.plan(product, None)
        assert decision.action == BuildAction.REBUILD
        assert decision.reason == "no previous build"
        assert decision.image_id is None

    def test_matching_fingerprint_reuses(self, planner, product):
        fingerprint = planner.fingerprint(product)
        previous = BuildRecord(service=product.name, fingerprint=fingerprint, image_id="sha256:abc")

        decision = planner.plan(product, previous)

        assert decision.is_reuse
        assert decision.image_id == "sha256:abc"

    def test_changed_fingerprint_rebuilds(self, planner, product, shop_dir):
        previous = BuildRecord(
            service=product.name,
            fingerprint=planner.fingerprint(product),
            image_id="sha256:abc",
        )
        (shop_dir / "products" / "Dockerfile").write_text("FROM alpine\n")

        decision = planner.plan(product, previous)

        assert decision.action == BuildAction.REBUILD
        assert decision.reason == "build context changed"

    def test_force(self, planner, product):
        previous = BuildRecord(product.name, planner.fingerprint(product), "sha256:abc")
        decision = planner.plan(product, previous, force=True)
        assert decision.action == BuildAction.REBUILD
        assert decision.reason == "forced"

    def test_plan_has_no_side_effects(self, planner, product, docker, build_store):
        planner.plan(product, None)
        assert docker.builds == []
        assert build_store.all() == {}

    def test_missing_context(self, planner, tmp_path):
        spec = ServiceSpec(name="ghost", build=BuildSpec(context=tmp_path / "nope"))
        with pytest.raises(BuildError) as exc_info:
            planner.plan(spec, None)
        assert exc_info.value.kind == BuildErrorKind.CONTEXT_MISSING

    def test_missing_recipe(self, planner, shop_dir):
        spec = ServiceSpec(
            name="products",
            build=BuildSpec(context=shop_dir / "products", dockerfile="Dockerfile.prod"),
        )
        with pytest.raises(BuildError) as exc_info:
            planner.plan(spec, None)
        assert exc_info.value.kind == BuildErrorKind.CONTEXT_MISSING

    def test_image_only_service_cannot_be_fingerprinted(self, planner):
        with pytest.raises(ValueError):
            planner.fingerprint(ServiceSpec(name="cache", image="redis"))


class TestExecute:
    """Running the build tool."""

    def test_execute_stores_record(self, planner, product, build_store):
        decision = planner.plan(product, None)

        record = planner.execute(product, decision)

        assert record.image_id.startswith("sha256:shop-product-service")
        assert record.fingerprint == decision.fingerprint
        assert build_store.get(product.name) == record

    def test_next_plan_reuses(self, planner, product, build_store):
        record = planner.execute(product, planner.plan(product, None))
        decision = planner.plan(product, build_store.get(product.name))
        assert decision.is_reuse
        assert decision.image_id == record.image_id

    def test_tool_failure_carries_exit_code(self, planner, product, docker, build_store):
        docker.build_failures["shop-product-service"] = 137

        with pytest.raises(BuildError) as exc_info:
            planner.execute(product, planner.plan(product, None))

        assert exc_info.value.kind == BuildErrorKind.BUILD_TOOL_FAILED
        assert exc_info.value.exit_code == 137
        assert build_store.get(product.name) is None

    def test_reuse_decision_rejected(self, planner, product):
        record = planner.execute(product, planner.plan(product, None))
        with pytest.raises(ValueError):
            planner.execute(product, planner.plan(product, record))

    def test_explicit_image_used_as_tag(self, planner, shop_dir, docker):
        spec = ServiceSpec(
            name="products",
            build=BuildSpec(context=shop_dir / "products"),
            image="registry.local/products:dev",
        )
        planner.execute(spec, planner.plan(spec, None))
        assert docker.builds == ["registry.local/products:dev"]
