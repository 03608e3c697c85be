from chart_render_service.status import STATUS_MSG, StatusEntry, status_entry, status_message


def test_known_codes():
    assert status_entry(200) == StatusEntry(200, "pong")
    assert status_message(404) == "invalid route"
    assert status_message(422) == "json parse error"
    assert status_message(499) == "client closed request before generation complete"
    assert status_message(522) == "client socket timeout"
    assert status_message(401) == "error during request"


def test_unknown_code_passes_through_with_empty_message():
    assert status_entry(418) == StatusEntry(418, "")


def test_table_is_fixed():
    assert {200, 401, 404, 422, 499, 522, 525} <= set(STATUS_MSG)
