"""Tests for Go type mapping, tags and template rendering."""

import jinja2
import pytest

from oasgen.codegen import Artifact, Renderer, RenderJob, create_environment
from oasgen.context_builder import (
    alternatives_literal,
    detect_imports,
    go_scalar,
    go_string,
    go_type,
    struct_tag,
    validate_tag,
)
from oasgen.errors import IssueKind, IssueList, Severity
from oasgen.type_graph import Constraints, TypeGraph, TypeKind


def header(imports):
    return {"package": "api", "version": "test", "source": "", "imports": imports}


class TestArtifact:
    def test_file_name(self):
        assert Artifact(name="client_pets", content="").file_name == "client_pets.go"


class TestGoTypes:
    @pytest.mark.parametrize("base,fmt,expected", [
        ("string", None, "string"),
        ("string", "date-time", "time.Time"),
        ("string", "byte", "[]byte"),
        ("string", "binary", "[]byte"),
        ("integer", "int32", "int32"),
        ("integer", None, "int64"),
        ("number", "float", "float32"),
        ("number", "double", "float64"),
        ("boolean", None, "bool"),
        ("any", None, "any"),
    ])
    def test_scalars(self, base, fmt, expected):
        assert go_scalar(base, fmt) == expected

    def test_composites(self):
        graph = TypeGraph()
        item = graph.scalar("string")
        assert go_type(graph, graph.slice_of(item)) == "[]string"
        assert go_type(graph, graph.map_of(graph.slice_of(item))) == "map[string][]string"

    def test_named_and_pointer(self):
        graph = TypeGraph()
        node = graph.add(TypeKind.STRUCT, name="Pet")
        assert go_type(graph, node.id) == "Pet"
        assert go_type(graph, node.id, pointer=True) == "*Pet"

    def test_go_string(self):
        assert go_string('say "hi"') == '"say \\"hi\\""'
        assert go_string("naïve") == '"naïve"'

    def test_struct_tag(self):
        assert struct_tag('json:"id"') == '`json:"id"`'
        assert struct_tag('json:"a`b"') == '"json:\\"a`b\\""'


class TestValidateTag:
    def setup_method(self):
        self.graph = TypeGraph()
        self.string = self.graph.scalar("string")
        self.integer = self.graph.scalar("integer", "int64")

    def test_required(self):
        assert validate_tag(self.graph, self.string, True, False, Constraints()) == "required"

    def test_nullable_not_required(self):
        assert validate_tag(self.graph, self.string, True, True, Constraints()) == ""

    def test_string_rules(self):
        c = Constraints(min_length=1, max_length=64, format="email")
        assert validate_tag(self.graph, self.string, False, False, c) == "min=1,max=64,email"

    def test_number_bounds(self):
        c = Constraints(minimum=0, maximum=10.0, exclusive_minimum=True)
        assert validate_tag(self.graph, self.integer, False, False, c) == "gt=0,lte=10"

    def test_slice_items(self):
        c = Constraints(min_items=1, max_items=5)
        assert validate_tag(self.graph, self.graph.slice_of(self.string), False, False, c) == "min=1,max=5"

    def test_oneof(self):
        c = Constraints(one_of=("a", "b"))
        assert validate_tag(self.graph, self.string, False, False, c) == "oneof=a b"

    def test_oneof_skipped_for_awkward_values(self):
        c = Constraints(one_of=("a b", "c"))
        assert validate_tag(self.graph, self.string, False, False, c) == ""


class TestDetectImports:
    def test_detects_qualified_names(self):
        body = "func f(ctx context.Context) (*http.Response, error) { return nil, fmt.Errorf(\"x\") }"
        assert detect_imports(body) == ["context", "fmt", "net/http"]

    def test_ignores_strings_and_comments(self):
        body = '// uses json.Marshal\nvar s = "time.Now"\nvar t = `strings.Join`\n'
        assert detect_imports(body) == []

    def test_ignores_selectors_on_values(self):
        assert detect_imports("x := c.http.Do(req)") == []

    def test_lowercase_member_is_not_a_package_use(self):
        assert detect_imports("var url = c.url.path") == []


class TestAlternativesLiteral:
    def test_empty(self):
        assert alternatives_literal([], "") == "[][]SecurityRequirement{}"

    def test_scopes(self):
        literal = alternatives_literal([{"oauth": ["read"], "key": []}], "")
        assert literal == (
            "[][]SecurityRequirement{\n"
            '\t{{Scheme: "key", Scopes: nil}, {Scheme: "oauth", Scopes: []string{"read"}}},\n'
            "}"
        )


class TestRenderer:
    def test_header_and_imports(self):
        env = jinja2.Environment(loader=jinja2.ChoiceLoader([
            jinja2.DictLoader({"body.go.j2": "var started = time.Now()\n"}),
            create_environment().loader,
        ]), keep_trailing_newline=True, trim_blocks=True, lstrip_blocks=True)
        renderer = Renderer(header, IssueList(), env)
        artifact = renderer.render(RenderJob("clock", "body.go.j2", {}))
        assert artifact.content == (
            "// Code generated by oasgen test. DO NOT EDIT.\n"
            "\n"
            "package api\n"
            "\n"
            "import (\n"
            '\t"time"\n'
            ")\n"
            "\n"
            "var started = time.Now()\n"
        )

    def test_failed_template_recorded(self):
        issues = IssueList()
        env = create_environment()
        env.loader = jinja2.ChoiceLoader([
            jinja2.DictLoader({"broken.go.j2": "{{ missing.attr }}"}),
            env.loader,
        ])
        renderer = Renderer(header, issues, env)
        artifacts = renderer.render_all([
            RenderJob("broken", "broken.go.j2", {}),
            RenderJob("fine", "_header.go.j2", header([])),
        ])
        assert [a.name for a in artifacts] == ["fine"]
        (issue,) = list(issues)
        assert issue.kind == IssueKind.RENDER_ERROR
        assert issue.severity == Severity.ERROR
        assert issue.location == "broken"
