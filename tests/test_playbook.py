from pathlib import Path
import textwrap

import pytest

from stagehand_automation.errors import ParseError
from stagehand_automation.playbook import PlaybookLoader


def write_role(root: Path, name: str, tasks: str, handlers: str | None = None) -> Path:
    role = root / "roles" / name
    (role / "tasks").mkdir(parents=True)
    (role / "tasks" / "main.yml").write_text(textwrap.dedent(tasks))
    if handlers is not None:
        (role / "handlers").mkdir()
        (role / "handlers" / "main.yml").write_text(textwrap.dedent(handlers))
    return role


def write_playbook(root: Path, text: str) -> Path:
    path = root / "site.yml"
    path.write_text(textwrap.dedent(text))
    return path


def test_loads_example_playbook(examples_dir: Path) -> None:
    (play,) = PlaybookLoader().load(examples_dir / "site.yml")

    assert play.hosts == "web"
    assert play.become is True
    (role,) = play.roles
    assert role.name == "nginx"
    assert [t.name for t in role.tasks] == ["Install nginx", "Deploy index.html", "Start and enable nginx"]
    install, deploy, start = role.tasks
    assert install.capability == "package"
    assert install.params["manager"] == "apt"
    assert install.notify == ("restart nginx",)
    assert deploy.capability == "copy"
    assert deploy.params["_files_dir"] == str(examples_dir / "roles" / "nginx" / "files")
    assert deploy.params["_templates_dir"] == str(examples_dir / "roles" / "nginx" / "templates")
    assert start.notify == ()
    assert [h.name for h in role.handlers] == ["restart nginx"]
    assert role.handlers[0].params["state"] == "restarted"
    assert role.handlers[0].params["_files_dir"] == deploy.params["_files_dir"]


def test_key_value_parameters_and_notify_list(tmp_path: Path) -> None:
    write_role(
        tmp_path,
        "web",
        """
        - name: motd
          copy: dest=/etc/motd content='hello world'
          notify:
            - reload a
            - reload b
        """,
    )
    path = write_playbook(
        tmp_path,
        """
        - hosts: all
          vars:
            greeting: hi
          roles:
            - role: web
        """,
    )

    (play,) = PlaybookLoader().load(path)

    (task,) = play.roles[0].tasks
    assert task.params["dest"] == "/etc/motd"
    assert task.params["content"] == "hello world"
    assert task.params["_vars"] == {"greeting": "hi"}
    assert task.notify == ("reload a", "reload b")
    assert play.become is False


def test_roles_path_is_searched_first(tmp_path: Path) -> None:
    shared = tmp_path / "shared"
    write_role(shared, "base", "- package: {name: git}\n")
    path = write_playbook(tmp_path, "- hosts: all\n  roles: [base]\n")

    (play,) = PlaybookLoader([shared / "roles"]).load(path)

    assert play.roles[0].tasks[0].name == "package 1"


@pytest.mark.parametrize(
    ("tasks", "message"),
    [
        ("- name: nothing\n", "expected exactly one capability, found none"),
        ("- name: two\n  copy: {dest: /a, content: x}\n  service: {name: a, state: started}\n", "found copy, service"),
        ("- name: odd\n  lineinfile: {path: /etc/hosts}\n", "unknown capability 'lineinfile'"),
        ("- name: bad\n  copy: dest\n", "is not key=value"),
        ("- name: quote\n  copy: \"dest=/a content='open\"\n", "No closing quotation"),
        ("- name: bad notify\n  service: {name: a, state: started}\n  notify: {a: b}\n", "'notify' must be"),
    ],
)
def test_invalid_tasks(tmp_path: Path, tasks: str, message: str) -> None:
    write_role(tmp_path, "broken", tasks)
    path = write_playbook(tmp_path, "- hosts: web\n  roles: [broken]\n")

    with pytest.raises(ParseError) as excinfo:
        PlaybookLoader().load(path)
    assert message in str(excinfo.value)
    assert "task 1" in str(excinfo.value)


def test_handlers_require_unique_names(tmp_path: Path) -> None:
    write_role(
        tmp_path,
        "web",
        "- service: {name: nginx, state: started}\n",
        "- service: {name: nginx, state: restarted}\n",
    )
    path = write_playbook(tmp_path, "- hosts: web\n  roles: [web]\n")
    with pytest.raises(ParseError, match="handlers require a name"):
        PlaybookLoader().load(path)

    (tmp_path / "roles" / "web" / "handlers" / "main.yml").write_text(
        "- name: restart\n  service: {name: a, state: restarted}\n"
        "- name: restart\n  service: {name: b, state: restarted}\n"
    )
    with pytest.raises(ParseError, match="duplicate handler names: restart"):
        PlaybookLoader().load(path)


def test_missing_role(tmp_path: Path) -> None:
    path = write_playbook(tmp_path, "- hosts: web\n  roles: [ghost]\n")
    with pytest.raises(ParseError, match="role 'ghost' not found"):
        PlaybookLoader().load(path)


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("[]\n", "non-empty list of plays"),
        ("- roles: [web]\n", "'hosts' must name an inventory group"),
        ("- hosts: web\n  become: sometimes\n  roles: [web]\n", "'become' must be a boolean"),
        ("- hosts: web\n  gather_facts: false\n  roles: [web]\n", "unsupported keys gather_facts"),
        ("- hosts: web\n", "at least one role is required"),
    ],
)
def test_invalid_plays(tmp_path: Path, text: str, message: str) -> None:
    write_role(tmp_path, "web", "- package: {name: git}\n")
    path = write_playbook(tmp_path, text)
    with pytest.raises(ParseError, match=message):
        PlaybookLoader().load(path)


def test_yaml_syntax_error_has_line_and_column(tmp_path: Path) -> None:
    path = write_playbook(tmp_path, "- hosts: web\n  roles: [web\n")
    with pytest.raises(ParseError) as excinfo:
        PlaybookLoader().load(path)
    err = excinfo.value
    assert err.line is not None
    assert err.column is not None
    assert str(err).startswith(f"{path}:")
