# ============================================================================
# SERVICE TESTS
# ============================================================================
# STATUS: Tests - Declaration loading, variable binding, state persistence
# PURPOSE: Verify YAML merging, variable precedence and atomic state files
# CREATED: 17 OCT 2026
# ============================================================================
"""
Service Tests

Covers:
1. DeclarationService: single file, merged directory, duplicates, bad YAML
2. bind_variables: defaults < var files < env < --var, all missing reported
3. StateService: empty load, save/load round trip with serial, 0600 file,
   stack mismatch, corrupt file, in-memory mode

Run with:
    pytest tests/test_services.py -v
"""

import os
import stat

import pytest

from core.contracts import NodeKind, NodeVariant
from core.errors import DeclarationError, DuplicateNodeError, MissingVariableError, StateError
from core.models import NodeRecord, StackState
from services import DeclarationService, StateService, bind_variables, parse_var_assignments
from services.declaration_service import load_var_file


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def stack_dir(tmp_path):
    """Two-file stack plus a variables file that must not be merged."""
    root = tmp_path / "demo"
    root.mkdir()
    (root / "variables.yaml").write_text(
        "stack: demo\n"
        "variables:\n"
        "  project_id:\n"
        "  region:\n"
        "    default: us-central1\n"
        "  database_password:\n"
        "    sensitive: true\n"
    )
    (root / "nodes.yaml").write_text(
        "nodes:\n"
        "  - kind: network\n"
        "    label: main\n"
        "    attributes:\n"
        "      project: '{{ var.project_id }}'\n"
        "  - kind: subnetwork\n"
        "    label: main\n"
        "    attributes:\n"
        "      network: {ref: network.main, attribute: self_link}\n"
        "      ip_cidr_range: 10.0.0.0/24\n"
    )
    (root / "dev.vars.yaml").write_text("project_id: from-file\n")
    return root


@pytest.fixture
def declaration(stack_dir):
    return DeclarationService().load(str(stack_dir))


# ============================================================================
# DECLARATION LOADING
# ============================================================================

class TestDeclarationService:
    """YAML loading and merging."""

    def test_directory_merge(self, declaration):
        assert declaration.stack == "demo"
        assert declaration.node_names() == ["network.main", "subnetwork.main"]
        assert set(declaration.variables) == {"project_id", "region", "database_password"}

    def test_vars_files_not_merged(self, stack_dir):
        (stack_dir / "other.vars.yaml").write_text("nodes: [not, a, node]\n")

        declaration = DeclarationService().load(str(stack_dir))

        assert len(declaration.nodes) == 2

    def test_single_file_stack_name_from_filename(self, tmp_path):
        path = tmp_path / "tiny.yaml"
        path.write_text("nodes:\n  - {kind: network, label: a}\n")

        assert DeclarationService().load(str(path)).stack == "tiny"

    def test_named_stack_under_stacks_dir(self, stack_dir):
        service = DeclarationService(stacks_dir=str(stack_dir.parent))

        assert service.load("demo").stack == "demo"
        assert service.list_stacks() == ["demo"]

    def test_unknown_source(self, tmp_path):
        with pytest.raises(DeclarationError):
            DeclarationService(stacks_dir=str(tmp_path)).load("nope")

    def test_duplicate_across_files(self, stack_dir):
        (stack_dir / "extra.yaml").write_text("nodes:\n  - {kind: network, label: main}\n")

        with pytest.raises(DuplicateNodeError):
            DeclarationService().load(str(stack_dir))

    def test_variable_declared_twice(self, stack_dir):
        (stack_dir / "more.yaml").write_text("variables:\n  region:\n")

        with pytest.raises(DeclarationError, match="declared twice"):
            DeclarationService().load(str(stack_dir))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("nodes: [unclosed\n")

        with pytest.raises(DeclarationError, match="invalid YAML"):
            DeclarationService().load(str(path))

    def test_invalid_model(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("nodes:\n  - {kind: warp_drive, label: a}\n")

        with pytest.raises(DeclarationError) as exc_info:
            DeclarationService().load(str(path))

        assert exc_info.value.source == str(path)


# ============================================================================
# VARIABLE BINDING
# ============================================================================

class TestBindVariables:
    """Variable precedence and validation."""

    def test_defaults_and_flags(self, declaration):
        values = bind_variables(
            declaration,
            cli_values={"project_id": "p", "database_password": "s"},
            environ={},
        )
        assert values == {"project_id": "p", "region": "us-central1", "database_password": "s"}

    def test_precedence(self, declaration, stack_dir):
        environ = {"STACKGRAPH_VAR_project_id": "from-env", "STACKGRAPH_VAR_DATABASE_PASSWORD": "env-pw"}

        values = bind_variables(declaration, var_files=[str(stack_dir / "dev.vars.yaml")], environ=environ)
        assert values["project_id"] == "from-env"
        assert values["database_password"] == "env-pw"

        values = bind_variables(
            declaration,
            var_files=[str(stack_dir / "dev.vars.yaml")],
            cli_values={"project_id": "from-flag"},
            environ=environ,
        )
        assert values["project_id"] == "from-flag"

    def test_var_file_over_default(self, declaration, tmp_path):
        path = tmp_path / "x.vars.yaml"
        path.write_text("region: asia-east1\nproject_id: p\ndatabase_password: s\n")

        assert bind_variables(declaration, var_files=[str(path)], environ={})["region"] == "asia-east1"

    def test_all_missing_reported(self, declaration):
        with pytest.raises(MissingVariableError) as exc_info:
            bind_variables(declaration, environ={})

        assert exc_info.value.names == ["project_id", "database_password"]

    def test_values_stay_opaque(self, declaration):
        values = bind_variables(
            declaration,
            cli_values=parse_var_assignments(["project_id=007", "database_password=a=b"]),
            environ={},
        )
        assert values["project_id"] == "007"
        assert values["database_password"] == "a=b"

    def test_bad_assignment(self):
        with pytest.raises(DeclarationError):
            parse_var_assignments(["no-equals-sign"])

    def test_var_file_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.vars.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(DeclarationError):
            load_var_file(str(path))


# ============================================================================
# STATE PERSISTENCE
# ============================================================================

def sample_state():
    state = StackState(stack="demo")
    state.record(NodeRecord(
        name="network.main",
        kind=NodeKind.NETWORK,
        variant=NodeVariant.RESOURCE,
        fingerprint="abc",
        outputs={"self_link": "net/main"},
    ))
    state.outputs["db_password"] = "secret"
    state.sensitive_outputs = ["db_password"]
    return state


class TestStateService:
    """JSON state file."""

    def test_missing_file_is_empty_state(self, tmp_path):
        state = StateService(str(tmp_path / "state.json")).load("demo")

        assert state.is_empty
        assert state.serial == 0

    def test_round_trip(self, tmp_path):
        service = StateService(str(tmp_path / "nested" / "state.json"))
        service.save(sample_state())

        loaded = service.load("demo")

        assert loaded.serial == 1
        assert loaded.get("network.main").outputs == {"self_link": "net/main"}
        assert loaded.get("network.main").variant == NodeVariant.RESOURCE
        assert loaded.outputs["db_password"] == "secret"

    def test_serial_increments(self, tmp_path):
        service = StateService(str(tmp_path / "state.json"))
        state = sample_state()
        service.save(state)
        service.save(state)

        assert service.load("demo").serial == 2

    def test_file_is_private(self, tmp_path):
        path = tmp_path / "state.json"
        StateService(str(path)).save(sample_state())

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_wrong_stack(self, tmp_path):
        service = StateService(str(tmp_path / "state.json"))
        service.save(sample_state())

        with pytest.raises(StateError):
            service.load("other")

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(StateError):
            StateService(str(path)).load("demo")

    def test_memory_mode_copies(self):
        service = StateService(None)
        state = sample_state()
        service.save(state)
        state.records.clear()

        assert service.exists()
        assert "network.main" in service.load("demo").records

    def test_forget_output_node_drops_value(self):
        state = sample_state()
        state.record(NodeRecord(
            name="output.db_password",
            kind=NodeKind.OUTPUT,
            variant=NodeVariant.OUTPUT,
            fingerprint="f",
            outputs={"value": "secret"},
        ))

        state.forget("output.db_password")

        assert "db_password" not in state.outputs
        assert state.get("output.db_password") is None
