import pytest

from codeimport.errors import LoaderError
from codeimport.lib.codetypes import CodeType
from codeimport.services import loaders as loaders_mod
from codeimport.services.loaders import LoaderRegistry, LoadRequest

from conftest import RecordingLoader


class FakeEntryPoint:
    def __init__(self, name, target):
        self.name = name
        self.target = target

    def load(self):
        return self.target


def test_registry_runs_registered_loader_once():
    loader = RecordingLoader()
    registry = LoaderRegistry()
    registry.register(CodeType.ICD10, loader)
    assert registry.supports(CodeType.ICD10)
    assert not registry.supports(CodeType.ICD9)
    registry.run(LoadRequest(code_type=CodeType.ICD10))
    assert len(loader.requests) == 1


def test_missing_loader_is_loader_error():
    with pytest.raises(LoaderError) as ei:
        LoaderRegistry().get(CodeType.RXNORM)
    assert ei.value.details == {"code_type": "RXNORM"}


def test_false_result_is_failure_but_none_is_success():
    LoaderRegistry({CodeType.RXNORM: RecordingLoader(result=None)}).run(LoadRequest(code_type=CodeType.RXNORM))
    LoaderRegistry({CodeType.RXNORM: RecordingLoader(result=True)}).run(LoadRequest(code_type=CodeType.RXNORM))
    with pytest.raises(LoaderError, match="RXNORM import failed"):
        LoaderRegistry({CodeType.RXNORM: RecordingLoader(result=False)}).run(LoadRequest(code_type=CodeType.RXNORM))


def test_entry_points_discovery(monkeypatch):
    ready = RecordingLoader()
    found = [
        FakeEntryPoint("rxnorm", RecordingLoader),
        FakeEntryPoint("ICD10", ready),
        FakeEntryPoint("LOINC", RecordingLoader),
    ]
    monkeypatch.setattr(loaders_mod, "entry_points", lambda group: found if group == "codeimport.loaders" else [])

    registry = LoaderRegistry.from_entry_points()
    assert isinstance(registry.get(CodeType.RXNORM), RecordingLoader)
    assert registry.get(CodeType.ICD10) is ready
    assert not registry.supports(CodeType.SNOMED)
