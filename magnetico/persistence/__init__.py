"""SQLite and PostgreSQL storage, and RabbitMQ, ZeroMQ and bitmagnet forwarding, of torrent metadata."""