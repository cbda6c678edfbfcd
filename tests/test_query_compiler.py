import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

from app.schemas.query import ResourceConfig
from app.services.query_compiler import (
    build_search_clause,
    build_sort_clause,
    coerce_value,
    compile_filter_clauses,
    compile_query,
    format_field_path,
    merge_predicate,
    parse_field_path,
    resolve_pagination,
)


def _pairs(order):
    return [(clause.field, clause.direction) for clause in order]


class PaginationTests(unittest.TestCase):
    def test_defaults(self):
        pagination = resolve_pagination()
        self.assertEqual(pagination.limit, 25)
        self.assertEqual(pagination.offset, 0)

    def test_minus_one_means_no_limit_regardless_of_page_and_offset(self):
        pagination = resolve_pagination(page="4", limit="-1", offset="30")
        self.assertIsNone(pagination.limit)
        self.assertEqual(pagination.offset, 0)

    def test_offset_derived_from_page(self):
        pagination = resolve_pagination(page="3", limit="10")
        self.assertEqual(pagination.limit, 10)
        self.assertEqual(pagination.offset, 20)

    def test_explicit_offset_wins_over_page(self):
        pagination = resolve_pagination(page="3", limit="10", offset="5")
        self.assertEqual(pagination.offset, 5)

    def test_empty_offset_falls_back_to_page(self):
        self.assertEqual(resolve_pagination(page="2", limit="10", offset="").offset, 10)

    def test_integer_prefix_parsing(self):
        pagination = resolve_pagination(page="2abc", limit="10items")
        self.assertEqual(pagination.limit, 10)
        self.assertEqual(pagination.offset, 10)

    def test_non_numeric_values_do_not_raise(self):
        self.assertIsNone(resolve_pagination(limit="many").limit)
        self.assertEqual(resolve_pagination(limit="10", page="first").offset, 0)
        self.assertEqual(resolve_pagination(limit="10", offset="later").offset, 0)

    def test_oversized_digit_strings_do_not_raise(self):
        huge = "9" * 5000
        self.assertIsNone(resolve_pagination(limit=huge).limit)
        self.assertEqual(resolve_pagination(limit="10", offset=huge).offset, 0)
        self.assertEqual(resolve_pagination(limit="10", page=huge).offset, 0)
        spec = compile_query({"limit": huge, "page": huge}, ResourceConfig())
        self.assertIsNone(spec.pagination.limit)


class SearchClauseTests(unittest.TestCase):
    def test_search_fields_are_combined_with_and(self):
        config = ResourceConfig(search_fields=("name", "email"))
        clause = build_search_clause("bob", config)
        self.assertEqual(
            clause,
            {"AND": [{"name": {"ILIKE": "%bob%"}}, {"email": {"ILIKE": "%bob%"}}]},
        )
        self.assertNotIn("OR", clause)

    def test_or_combinator_toggle(self):
        config = ResourceConfig(search_fields=("name", "email"), search_combinator="OR")
        clause = build_search_clause("bob", config)
        self.assertEqual(list(clause), ["OR"])
        self.assertEqual(len(clause["OR"]), 2)

    def test_dotted_search_field_is_quoted(self):
        config = ResourceConfig(search_fields=("user.email",))
        self.assertEqual(build_search_clause("x", config), {"AND": [{"$user.email$": {"ILIKE": "%x%"}}]})

    def test_no_search_or_no_fields_contributes_nothing(self):
        self.assertEqual(build_search_clause(None, ResourceConfig(search_fields=("name",))), {})
        self.assertEqual(build_search_clause("", ResourceConfig(search_fields=("name",))), {})
        self.assertEqual(build_search_clause("bob", ResourceConfig()), {})


class SortClauseTests(unittest.TestCase):
    def test_leading_hyphen_token_is_dropped(self):
        config = ResourceConfig(sort_fields=("name", "age"))
        self.assertEqual(_pairs(build_sort_clause("name&-age", config)), [("name", "ASC")])

    def test_trailing_hyphen_keeps_key_as_ascending(self):
        config = ResourceConfig(sort_fields=("name", "age"))
        self.assertEqual(_pairs(build_sort_clause("age-&name", config)), [("age", "ASC"), ("name", "ASC")])

    def test_unknown_fields_are_dropped_and_order_kept(self):
        config = ResourceConfig(sort_fields=("name", "age", "user.full_name"))
        order = build_sort_clause("age&secret&user.full_name&name", config)
        self.assertEqual(_pairs(order), [("age", "ASC"), ("$user.full_name$", "ASC"), ("name", "ASC")])

    def test_empty_sort(self):
        self.assertEqual(build_sort_clause(None, ResourceConfig(sort_fields=("name",))), [])
        self.assertEqual(build_sort_clause("", ResourceConfig(sort_fields=("name",))), [])


class CoercionTests(unittest.TestCase):
    def test_numbers(self):
        self.assertEqual(coerce_value("1000"), 1000)
        self.assertIsInstance(coerce_value("1000"), int)
        self.assertAlmostEqual(coerce_value("3.14"), 3.14)
        self.assertEqual(coerce_value("-7"), -7)
        self.assertEqual(coerce_value("1e3"), 1000.0)

    def test_non_numbers_stay_strings(self):
        self.assertEqual(coerce_value("active"), "active")
        self.assertEqual(coerce_value("10abc"), "10abc")
        self.assertEqual(coerce_value(""), "")
        self.assertEqual(coerce_value("   "), "   ")
        self.assertEqual(coerce_value("nan"), "nan")
        self.assertEqual(coerce_value("inf"), "inf")

    def test_oversized_integral_literal_falls_back_to_float(self):
        value = coerce_value("0" * 5000 + "1")
        self.assertIsInstance(value, float)
        self.assertEqual(value, 1.0)
        self.assertEqual(coerce_value("9" * 5000), "9" * 5000)
        config = ResourceConfig(filter_fields=("balance",))
        spec = compile_query({"f_balance": ">=" + "0" * 5000 + "7"}, config)
        self.assertEqual(spec.predicate, {"balance": {"GTE": 7.0}})

    def test_digit_separators_and_non_ascii_digits_stay_strings(self):
        self.assertEqual(coerce_value("1_000"), "1_000")
        self.assertEqual(coerce_value("\u0661\u0662"), "\u0661\u0662")
        self.assertEqual(coerce_value("Infinity"), "Infinity")
        self.assertEqual(coerce_value(".5"), 0.5)
        self.assertEqual(coerce_value("5."), 5.0)
        self.assertEqual(resolve_pagination(limit="\u0661\u0660").limit, None)


class FilterClauseTests(unittest.TestCase):
    def setUp(self):
        self.config = ResourceConfig(filter_fields=("status", "balance", "role", "perm", "user.email"))

    def test_equality_string(self):
        self.assertEqual(compile_filter_clauses({"f_status": "active"}, self.config), {"status": "active"})

    def test_equality_number(self):
        self.assertEqual(compile_filter_clauses({"f_balance": "1000"}, self.config), {"balance": 1000})

    def test_gte_and_gt_are_distinguished(self):
        self.assertEqual(compile_filter_clauses({"f_balance": ">=1000"}, self.config), {"balance": {"GTE": 1000}})
        self.assertEqual(compile_filter_clauses({"f_balance": ">1000"}, self.config), {"balance": {"GT": 1000}})

    def test_other_comparisons(self):
        self.assertEqual(compile_filter_clauses({"f_balance": "<=20"}, self.config), {"balance": {"LTE": 20}})
        self.assertEqual(compile_filter_clauses({"f_balance": "<20"}, self.config), {"balance": {"LT": 20}})
        self.assertEqual(compile_filter_clauses({"f_status": "!=banned"}, self.config), {"status": {"NE": "banned"}})

    def test_or_split(self):
        self.assertEqual(
            compile_filter_clauses({"f_role": "admin|editor"}, self.config),
            {"OR": [{"role": "admin"}, {"role": "editor"}]},
        )

    def test_and_split(self):
        self.assertEqual(
            compile_filter_clauses({"f_perm": "read%write"}, self.config),
            {"AND": [{"perm": "read"}, {"perm": "write"}]},
        )

    def test_and_split_wins_over_comparison_symbols(self):
        self.assertEqual(
            compile_filter_clauses({"f_balance": ">10%<20"}, self.config),
            {"AND": [{"balance": ">10"}, {"balance": "<20"}]},
        )

    def test_logical_groups_are_shared_across_keys(self):
        predicate = compile_filter_clauses({"f_role": "admin|editor", "f_status": "new|active"}, self.config)
        self.assertEqual(
            predicate,
            {"OR": [{"role": "admin"}, {"role": "editor"}, {"status": "new"}, {"status": "active"}]},
        )

    def test_dotted_filter_field_is_quoted(self):
        self.assertEqual(
            compile_filter_clauses({"f_user.email": "a@b.c"}, self.config),
            {"$user.email$": "a@b.c"},
        )

    def test_ignored_keys(self):
        predicate = compile_filter_clauses(
            {"status": "active", "f_secret": "1", "x_balance": "5", "f_": "y"},
            self.config,
        )
        self.assertEqual(predicate, {})


class FieldPathTests(unittest.TestCase):
    def test_format_and_parse(self):
        self.assertEqual(format_field_path("name"), "name")
        self.assertEqual(format_field_path("user.email"), "$user.email$")
        self.assertEqual(parse_field_path("$user.email$"), ["user", "email"])
        self.assertEqual(parse_field_path("name"), ["name"])

    def test_custom_formatter_is_used_everywhere(self):
        config = ResourceConfig(search_fields=("user.name",), sort_fields=("user.name",), filter_fields=("user.name",))
        spec = compile_query(
            {"search": "a", "sort": "user.name", "f_user.name": "b"},
            config,
            format_path=lambda field: field.replace(".", "__"),
        )
        self.assertEqual(spec.order[0].field, "user__name")
        self.assertIn("user__name", spec.predicate)
        self.assertEqual(spec.predicate["AND"], [{"user__name": {"ILIKE": "%a%"}}])


class CompileQueryTests(unittest.TestCase):
    def setUp(self):
        self.config = ResourceConfig(
            search_fields=("name", "email"),
            sort_fields=("name", "age"),
            filter_fields=("status", "perm", "role"),
        )

    def test_full_compile(self):
        spec = compile_query(
            {"search": "bob", "sort": "name", "page": "2", "limit": "10", "f_status": "active", "other": "x"},
            self.config,
        )
        self.assertEqual(spec.pagination.limit, 10)
        self.assertEqual(spec.pagination.offset, 10)
        self.assertEqual(_pairs(spec.order), [("name", "ASC")])
        self.assertEqual(
            spec.predicate,
            {
                "AND": [{"name": {"ILIKE": "%bob%"}}, {"email": {"ILIKE": "%bob%"}}],
                "status": "active",
            },
        )

    def test_filter_and_group_replaces_search_and_group(self):
        spec = compile_query({"search": "bob", "f_perm": "read%write"}, self.config)
        self.assertEqual(spec.predicate, {"AND": [{"perm": "read"}, {"perm": "write"}]})

    def test_search_and_filter_or_group_coexist(self):
        spec = compile_query({"search": "bob", "f_role": "admin|editor"}, self.config)
        self.assertEqual(set(spec.predicate), {"AND", "OR"})

    def test_empty_params(self):
        spec = compile_query({}, self.config)
        self.assertEqual(spec.pagination.limit, 25)
        self.assertEqual(spec.pagination.offset, 0)
        self.assertEqual(spec.order, [])
        self.assertEqual(spec.predicate, {})

    def test_idempotent(self):
        params = {"search": "bob", "sort": "name&-age", "limit": "5", "f_role": "a|b", "f_status": ">=3"}
        first = compile_query(params, self.config)
        second = compile_query(params, self.config)
        self.assertEqual(first, second)
        self.assertEqual(first.model_dump(), second.model_dump())
        self.assertIsNot(first.predicate, second.predicate)

    def test_input_mapping_is_not_mutated(self):
        params = {"search": "bob", "f_status": "active"}
        compile_query(params, self.config)
        self.assertEqual(params, {"search": "bob", "f_status": "active"})

    def test_merge_predicate_last_writer_wins(self):
        merged = merge_predicate([("search", {"AND": [1], "a": 1}), ("filter", {"AND": [2]})])
        self.assertEqual(merged, {"AND": [2], "a": 1})


if __name__ == "__main__":
    unittest.main()
