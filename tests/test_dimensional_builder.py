"""Star-schema projections built from canonical DataFrames."""

from datetime import date

import pytest

from dimensional_builder import DimensionalBuilder, assign_surrogate_key


@pytest.fixture
def builder(catalog):
    return DimensionalBuilder(catalog)


@pytest.fixture
def customer_dimension(builder, make_df):
    customers = make_df("customer", [
        {"customer_id": 20, "customer_number": "AW20", "first_name": "Ann", "gender": "n/a",
         "marital_status": "Single"},
        {"customer_id": 10, "customer_number": "AW10", "first_name": "Bob", "gender": "Male",
         "marital_status": "Married"},
        {"customer_id": 30, "customer_number": "AW30", "first_name": "Cy", "gender": "n/a",
         "marital_status": "n/a"},
    ])
    demo = make_df("customer_demo", [
        {"customer_number": "AW20", "birthdate": date(1980, 2, 3), "gender": "Female"},
        {"customer_number": "AW10", "birthdate": date(1975, 7, 1), "gender": "Female"},
    ])
    location = make_df("customer_location", [
        {"customer_number": "AW20", "country": "Germany"},
        {"customer_number": "AW10", "country": "Australia"},
    ])
    return builder.build_customer_dimension(customers, demo, location)


@pytest.fixture
def product_dimension(builder, make_df):
    products = make_df("product", [
        {"product_id": 1, "category_id": "BI_RB", "product_number": "BK-R", "product_name": "Road old",
         "cost": 10, "product_line": "Road", "start_date": date(2021, 1, 1), "end_date": date(2021, 12, 31)},
        {"product_id": 2, "category_id": "BI_RB", "product_number": "BK-R", "product_name": "Road",
         "cost": 12, "product_line": "Road", "start_date": date(2022, 1, 1)},
        {"product_id": 3, "category_id": "AC_HE", "product_number": "HL-1", "product_name": "Helmet",
         "cost": 5, "product_line": "n/a", "start_date": date(2020, 5, 1)},
        {"product_id": 4, "category_id": "XX_YY", "product_number": "ZZ-9", "product_name": "Orphan",
         "cost": 0, "product_line": "n/a", "start_date": date(2022, 1, 1)},
    ])
    categories = make_df("product_category", [
        {"category_id": "BI_RB", "category": "Bikes", "subcategory": "Road Bikes", "maintenance": "Yes"},
        {"category_id": "AC_HE", "category": "Accessories", "subcategory": "Helmets", "maintenance": "No"},
    ])
    return builder.build_product_dimension(products, categories)


class TestCustomerDimension:

    def test_keys_dense_and_ordered_by_customer_id(self, customer_dimension):
        rows = customer_dimension.orderBy("customer_key").collect()
        assert [(r.customer_key, r.customer_id) for r in rows] == [(1, 10), (2, 20), (3, 30)]

    def test_crm_gender_wins_unless_not_available(self, customer_dimension):
        genders = {r.customer_id: r.gender for r in customer_dimension.collect()}
        assert genders == {10: "Male", 20: "Female", 30: "n/a"}

    def test_erp_attributes_joined_on_customer_number(self, customer_dimension):
        rows = {r.customer_id: r for r in customer_dimension.collect()}
        assert rows[20].country == "Germany"
        assert rows[20].birthdate == date(1980, 2, 3)
        assert rows[30].country is None
        assert rows[30].birthdate is None

    def test_columns_follow_schema(self, customer_dimension, catalog):
        assert customer_dimension.columns == catalog.to_spark_schema("customer_dimension").fieldNames()


class TestProductDimension:

    def test_only_current_versions(self, product_dimension):
        assert sorted(r.product_id for r in product_dimension.collect()) == [2, 3, 4]

    def test_keys_ordered_by_start_date_then_product_number(self, product_dimension):
        rows = product_dimension.orderBy("product_key").collect()
        assert [(r.product_key, r.product_number) for r in rows] == [
            (1, "HL-1"), (2, "BK-R"), (3, "ZZ-9"),
        ]

    def test_category_enrichment(self, product_dimension):
        rows = {r.product_number: r for r in product_dimension.collect()}
        assert (rows["BK-R"].category, rows["BK-R"].subcategory) == ("Bikes", "Road Bikes")
        assert rows["HL-1"].maintenance == "No"
        assert rows["ZZ-9"].category is None


class TestSalesFact:

    def test_lookups_and_unmatched_rows(self, builder, make_df, customer_dimension, product_dimension):
        sales = make_df("sales_line", [
            {"order_number": "SO1", "product_number": "BK-R", "customer_id": 20,
             "order_date": date(2023, 1, 2), "ship_date": date(2023, 1, 9), "due_date": date(2023, 1, 14),
             "sales_amount": 24, "quantity": 2, "price": 12},
            {"order_number": "SO2", "product_number": "GONE", "customer_id": 10,
             "sales_amount": 5, "quantity": 1, "price": 5},
            {"order_number": "SO3", "product_number": "HL-1", "customer_id": 99,
             "sales_amount": 5, "quantity": 1, "price": 5},
        ])
        fact = builder.build_sales_fact(sales, product_dimension, customer_dimension)
        rows = {r.order_number: r for r in fact.collect()}

        assert len(rows) == 3
        assert (rows["SO1"].product_key, rows["SO1"].customer_key) == (2, 2)
        assert rows["SO1"].shipping_date == date(2023, 1, 9)
        assert rows["SO2"].product_key is None
        assert rows["SO2"].customer_key == 1
        assert rows["SO3"].customer_key is None
        assert fact.columns == [
            "order_number", "product_key", "customer_key", "order_date",
            "shipping_date", "due_date", "sales_amount", "quantity", "price",
        ]


def test_assign_surrogate_key_puts_key_first(spark):
    df = spark.createDataFrame([("b",), ("a",), ("c",)], ["code"])
    keyed = assign_surrogate_key(df, "code_key", ["code"])
    assert keyed.columns == ["code_key", "code"]
    assert [(r.code_key, r.code) for r in keyed.orderBy("code_key").collect()] == [
        (1, "a"), (2, "b"), (3, "c"),
    ]


def test_unknown_build_target(builder):
    with pytest.raises(ValueError, match="Unknown dimensional table"):
        builder.build("date_dimension", store=None)
