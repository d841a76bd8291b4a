"""Tests for the naming module."""

from oasgen.errors import IssueKind, IssueList, Severity
from oasgen.naming import (
    IdentifierAllocator,
    NameScope,
    clean_description,
    escape_reserved_word,
    method_name,
    method_name_from_path,
    sanitize_group_name,
    to_param_name,
    to_type_name,
)


class TestToTypeName:
    """Test OpenAPI name -> exported Go identifier."""

    def test_snake_case(self):
        assert to_type_name("pet_store") == "PetStore"

    def test_kebab_case(self):
        assert to_type_name("user-account") == "UserAccount"

    def test_keeps_inner_capitals(self):
        assert to_type_name("petId") == "PetId"

    def test_symbol_prefix_dropped(self):
        assert to_type_name("@id") == "Id"

    def test_leading_digit(self):
        assert to_type_name("2fa") == "T2fa"

    def test_empty(self):
        assert to_type_name("") == "Type"

    def test_only_symbols(self):
        assert to_type_name("$$") == "Type"

    def test_keyword_escaped(self):
        assert to_type_name("type") == "Type_"


class TestToParamName:
    def test_camel_case(self):
        assert to_param_name("pet-id") == "petId"

    def test_already_camel(self):
        assert to_param_name("petId") == "petId"

    def test_keyword(self):
        assert to_param_name("range") == "range_"

    def test_valid_identifier(self):
        assert to_param_name("X-Request-ID").isidentifier()


class TestEscapeReservedWord:
    def test_keyword(self):
        assert escape_reserved_word("func") == "func_"

    def test_case_insensitive(self):
        assert escape_reserved_word("Map") == "Map_"

    def test_predeclared_identifier_allowed(self):
        assert escape_reserved_word("error") == "error"


class TestMethodNames:
    def test_operation_id_wins(self):
        assert method_name("listPets", "get", "/pets") == "ListPets"

    def test_from_path(self):
        assert method_name_from_path("get", "/pets") == "GetPets"

    def test_placeholder(self):
        assert method_name_from_path("get", "/pets/{petId}") == "GetPetsByPetId"

    def test_multiple_placeholders(self):
        assert method_name_from_path("delete", "/users/{userId}/pets/{petId}") == (
            "DeleteUsersByUserIdPetsByPetId"
        )

    def test_no_operation_id(self):
        assert method_name("", "post", "/store/orders") == "PostStoreOrders"


class TestSanitizeGroupName:
    def test_spaces_and_hyphens(self):
        assert sanitize_group_name("User Accounts") == "user_accounts"

    def test_symbols_stripped(self):
        assert sanitize_group_name("pets & toys!") == "pets_toys"

    def test_empty(self):
        assert sanitize_group_name("!!!") == "misc"


class TestCleanDescription:
    def test_newlines_flattened(self):
        assert clean_description("line one\nline two") == "line one line two"

    def test_truncated(self):
        result = clean_description("x" * 500)
        assert len(result) == 200
        assert result.endswith("...")


class TestNameScope:
    def test_collision_suffix(self):
        issues = IssueList()
        scope = NameScope("Thing fields", issues)
        assert scope.allocate("@id") == "Id"
        assert scope.allocate("id") == "Id2"
        assert scope.allocate("ID") == "ID"
        assert scope.allocate("_id") == "Id3"

    def test_collision_reported_as_info(self):
        issues = IssueList()
        scope = NameScope("package", issues)
        scope.allocate("pet")
        scope.allocate("Pet", "components.schemas.Pet")
        (issue,) = list(issues)
        assert issue.severity == Severity.INFO
        assert issue.kind == IssueKind.NAMING_COLLISION_RESOLVED
        assert issue.location == "components.schemas.Pet"
        assert "Pet2" in issue.message

    def test_reserved_names_are_skipped(self):
        scope = NameScope("package", IssueList())
        scope.reserve("Client")
        assert scope.allocate("client") == "Client2"

    def test_identifiers_in_order(self):
        scope = NameScope("package", IssueList())
        for name in ("b", "a", "b"):
            scope.allocate(name)
        assert scope.identifiers == ["B", "A", "B2"]
        assert len(scope) == 3

    def test_all_unique(self):
        scope = NameScope("package", IssueList())
        names = [scope.allocate(raw) for raw in ("pet", "Pet", "pet_", "PET", "p-et", "pet")]
        assert len(set(names)) == len(names)


class TestIdentifierAllocator:
    def test_shared_scope(self):
        allocator = IdentifierAllocator(IssueList())
        assert allocator.scope("package") is allocator.package

    def test_new_scope_is_isolated(self):
        allocator = IdentifierAllocator(IssueList())
        first = allocator.new_scope("A fields")
        second = allocator.new_scope("A fields")
        assert first.allocate("name") == "Name"
        assert second.allocate("name") == "Name"

    def test_custom_normalizer(self):
        allocator = IdentifierAllocator(IssueList())
        args = allocator.new_scope("args", normalize=to_param_name)
        assert args.allocate("pet-id") == "petId"
        assert args.allocate("petId") == "petId2"
