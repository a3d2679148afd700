from batchloader import BatchLoader, schedule_manual


def fetch_prices(skus: list[str]) -> list:
    """Pretend bulk price lookup."""
    print(f"bulk lookup: {skus}")
    return [len(sku) * 1.5 for sku in skus]


def main() -> None:
    """Batch lookups from a plain synchronous job with explicit flushes."""
    loader = BatchLoader(fetch_prices, schedule_flush=schedule_manual, max_batch_size=3)
    handles = loader.load_many(["apple", "pear", "apple", "fig", "kiwi"])
    loader.flush()
    for handle in handles:
        print(handle.key, handle.result())


if __name__ == "__main__":
    main()
