from visual_planner.llm.selector import ModelSelector


def test_defaults_to_first_high_reasoning_model():
    selector = ModelSelector(["pro-1", "pro-2"], ["flash"], "fallback")
    assert selector.current_model == "pro-1"
    assert selector.available_models == ["pro-1", "pro-2", "flash"]


def test_empty_pools_use_default_model():
    selector = ModelSelector([], [], "fallback")
    assert selector.current_model == "fallback"
    assert selector.available_models == ["fallback"]


def test_available_models_skip_duplicates():
    selector = ModelSelector(["pro"], ["pro", "flash", "flash"], "fallback")
    assert selector.available_models == ["pro", "flash"]


def test_select_model_notifies_only_on_change():
    selector = ModelSelector(["pro"], ["flash"], "fallback")
    changes = []
    selector.subscribe(changes.append)

    assert selector.select_model("pro") is False
    assert selector.select_model("") is False
    assert selector.select_model("   ") is False
    assert selector.select_model("flash") is True
    assert selector.select_model("flash") is False

    assert changes == ["flash"]
    assert selector.current_model == "flash"
