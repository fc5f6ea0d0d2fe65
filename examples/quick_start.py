#!/usr/bin/env python3
# Example usage of embedded_docstore

from embedded_docstore import Store


def main() -> None:
    # Open (or create) a store in ./demo_data: one <collection>.log file per collection
    with Store.open("demo_data") as store:
        users = store.collection("users")

        # Every append is durable once it returns and gets the next id
        rid = users.append({"name": "Ronak", "age": 33, "flags": {"active": True}})
        users.insert_many([
            {"name": "Bhavya", "age": 17, "flags": {"active": True}},
            {"name": "Utsav", "age": 41, "flags": {"active": False}},
        ])
        print("First id:", rid)

        # Full replay in append order
        for record_id, rec in users.scan():
            print(record_id, rec)

        # Query helpers run over the same scan
        for record_id, rec in users.find({"flags": {"active": True}, "age": {"$gte": 18}}):
            print("Adult active:", record_id, rec["name"])

        # Compaction rewrites the file keeping only matching records (ids are preserved)
        users.compact(lambda rec: rec["name"] != "Bhavya")
        print("After compaction:", list(users.scan()))

        removed = users.delete({"name": "Utsav"})
        print("Deleted:", removed)


if __name__ == "__main__":
    main()
