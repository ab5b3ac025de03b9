from chatwal_client import ClientConfig, ChatWalClient, models as M

cfg = ClientConfig(base_url="http://localhost:8000")
cli = ChatWalClient(cfg)

# 1) durable submit (returns once the record is on disk)
out = cli.submit_message(M.SubmitMessageIn(
    room_id="room-demo",
    message="Is this still available?",
    sender_id="u-buyer", sender_email="buyer@example.com",
    receiver_id="u-seller", receiver_email="seller@example.com",
    product_id="p-1", product_title="Road bike",
))
print("Saved:", out.message_id, out.durability)

# 2) transport delivered it
cli.acknowledge(out.message_id, "delivered")

# 3) commit to the primary store now instead of waiting for the timer
print("Batch:", cli.process_now())

# 4) inspect
print("Health:", cli.health().status)
for e in cli.logs(limit=5):
    print(e.level, e.operation)
