#!/usr/bin/env python3
"""
Show where (if anywhere) the analyzed report for a product is stored.

Runs every (location, id strategy) probe and the productId/productUrl field
lookups, then prints which one ``ReportLocator`` would use.
"""

import asyncio
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pricewatch.config import settings
from pricewatch.db.client import create_mongo_client
from pricewatch.db.products import ProductStore
from pricewatch.db.reports import ReportLocation, ReportLocator


async def probe(product_id: str) -> None:
    client = create_mongo_client()
    try:
        database = client[settings.mongodb_database]
        store = ProductStore(database[settings.products_collection])
        locator = ReportLocator(
            client,
            default_database=settings.mongodb_database,
            locations=[ReportLocation.parse(spec) for spec in settings.report_locations],
        )

        product = await store.find_by_id(product_id)
        product_url = product.get("url") if product else None

        print("Report Probe")
        print("============")
        print(f"productId: {product_id}")
        print(f"product: {'found' if product else 'not found'}")
        print(f"productUrl: {product_url}")
        if product:
            analytics = product.get("analytics") or {}
            print(f"embedded status: {analytics.get('status', 'idle')}")
        print("")

        print("Id probes")
        print("---------")
        for location, strategy in locator.probes():
            query = strategy.build_filter(product_id)
            if query is None:
                print(f"  {location.descriptor:<28} {strategy.name:<10} skipped (not an ObjectId)")
                continue
            doc = await locator.collection_for(location).find_one(query)
            if not doc:
                print(f"  {location.descriptor:<28} {strategy.name:<10} -")
                continue
            keys = ", ".join(sorted(k for k in doc if k != "_id"))
            print(
                f"  {location.descriptor:<28} {strategy.name:<10} HIT "
                f"_id={type(doc['_id']).__name__} keys=[{keys}]"
            )
        print("")

        print(f"Field lookups in {locator.primary.descriptor}")
        print("-------------")
        for field, value in (("productId", product_id), ("productUrl", product_url)):
            match = await locator.find_by_field(field, value)
            print(f"  {field:<11} {'HIT' if match else '-'}")
        print("")

        match = await locator.find_current(product_id, product_url)
        print(f"Selected: {match.source if match else 'none (embedded record is used)'}")
    finally:
        await client.close()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Probe analyzed report locations for a product")
    parser.add_argument("product_id", help="Product id (24-character hex ObjectId)")

    args = parser.parse_args()

    asyncio.run(probe(args.product_id))
