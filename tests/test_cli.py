import json

from kinship_py.cli import build_parser, main


def _run(capsys, tmp_path, *argv):
    code = main(["--data-dir", str(tmp_path), *argv])
    return code, json.loads(capsys.readouterr().out)


def test_add_people_and_classify(capsys, tmp_path):
    _, father = _run(capsys, tmp_path, "add-person", "Ivan", "Petrov", "--gender", "M", "--birth", "ABT 1890")
    _, son = _run(capsys, tmp_path, "add-person", "Petr", "Petrov", "--gender", "M")
    assert father["birth_date"]["precision"] == "approx"

    code, edge = _run(capsys, tmp_path, "add-edge", father["id"], son["id"], "parent")
    assert code == 0
    assert edge["type_code"] == "parent"

    code, rel = _run(capsys, tmp_path, "classify", son["id"], father["id"])
    assert code == 0
    assert rel["kind"] == "ancestor"
    assert rel["label"] == "father"
    assert rel["inverse_label"] == "son"

    _, rel_ru = _run(capsys, tmp_path, "classify", son["id"], father["id"], "--locale", "ru")
    assert rel_ru["label"] == "отец"

    _, anc = _run(capsys, tmp_path, "ancestors", son["id"])
    assert [a["person"] for a in anc["ancestors"]] == [father["id"]]


def test_graph_errors_exit_with_one(capsys, tmp_path):
    _, a = _run(capsys, tmp_path, "add-person", "A", "One")
    _, b = _run(capsys, tmp_path, "add-person", "B", "Two")
    _run(capsys, tmp_path, "add-edge", a["id"], b["id"], "parent")

    code, err = _run(capsys, tmp_path, "add-edge", b["id"], a["id"], "parent")
    assert code == 1
    assert err["error"] == "CycleDetected"

    code, err = _run(capsys, tmp_path, "add-edge", a["id"], b["id"], "cousin", "-q", "cousin_degree=0")
    assert code == 1
    assert err["error"] == "InvalidQualifier"


def test_parser_without_command_prints_help(capsys):
    assert main([]) == 0
    assert "kinship" in capsys.readouterr().out
    args = build_parser().parse_args(["classify", "a", "b"])
    assert args.locale == "en"
