#!/usr/bin/env python3
"""
Basic Usage Example for SQL Repair Agent

This example demonstrates:
1. Creating a pipeline with SQLite
2. Inspecting the schema document the model will see
3. Answering questions and reading the attempt trail
"""
import sys
import os

# Add src to path for local development
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from sql_repair_agent import (
    RepairExhaustedError,
    RepairRequest,
    SQLRepairError,
    create_pipeline,
    setup_logging,
)


def main():
    setup_logging(level="INFO")

    print("=" * 60)
    print("SQL Repair Agent - Basic Usage Example")
    print("=" * 60)

    # Create pipeline with SQLite in-memory database
    print("\n1. Creating pipeline with SQLite...")
    pipeline = create_pipeline(
        db_type="sqlite",
        database=":memory:",
        max_retries=2,
        excluded_columns=["email"],
        domain_hints=["orders.status: 'C' = completed, 'P' = pending"],
    )

    print("2. Setting up test database schema...")
    provider = pipeline.provider
    provider.execute("""
        CREATE TABLE users (
            id INTEGER PRIMARY KEY,
            name VARCHAR(100) NOT NULL,
            email VARCHAR(255),
            city VARCHAR(50)
        )
    """)
    provider.execute("""
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY,
            user_id INTEGER NOT NULL,
            product_name VARCHAR(100) NOT NULL,
            total_amount DECIMAL(10, 2),
            status CHAR(1)
        )
    """)
    provider.execute(
        "INSERT INTO users (name, email, city) VALUES "
        "('Alice', 'alice@example.com', 'New York'), "
        "('Bob', 'bob@example.com', 'Los Angeles')"
    )
    provider.execute(
        "INSERT INTO orders (user_id, product_name, total_amount, status) VALUES "
        "(1, 'Laptop', 999.99, 'C'), (1, 'Mouse', 49.98, 'C'), (2, 'Keyboard', 79.99, 'P')"
    )

    print("\n3. Schema document:")
    document = pipeline.build_schema_document()
    print(document.to_prompt_text())

    questions = [
        "Show the total spending per user",
        "List orders that are still pending",
    ]

    print("\n4. Answering questions (requires AWS Bedrock credentials)...")
    print("-" * 60)

    for i, question in enumerate(questions, 1):
        print(f"\nQuestion {i}: {question}")
        try:
            result = pipeline.run(question, schema_document=document)
            print(f"   SQL: {result.final_sql}")
            for row in result.rowset:
                print(f"   {row}")
            print(f"   Attempts: {result.attempt_count}")
        except RepairExhaustedError as e:
            print(f"   No query succeeded after {len(e.attempts)} attempt(s):")
            for attempt in e.attempts:
                print(f"     [{attempt.attempt_index}] {attempt.sql!r}: {attempt.error_message}")
        except SQLRepairError as e:
            print(f"   Error: {e}")

    # process() reports every outcome as a result instead of raising
    print("\n5. Structured result:")
    result = pipeline.process(RepairRequest(question="How many users live in Chicago?"))
    print(f"   State: {result.state.value}")
    if result.error_details:
        print(f"   Error: {result.error_details['error_type']}: {result.error_details['message']}")

    print("\n6. Cleaning up...")
    pipeline.close()

    print("\n" + "=" * 60)
    print("Example completed!")
    print("=" * 60)
    print("""
To run with actual LLM calls:
1. Set AWS credentials (AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY)
2. Set AWS_REGION (e.g., us-east-1)
3. Ensure you have access to Bedrock Claude models
""")


if __name__ == "__main__":
    main()
